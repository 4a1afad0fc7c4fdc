"""Read-only query selectors for the workflow kernel."""

from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.selectors.template_selector import TemplateSelector

__all__ = ["InstanceSelector", "TemplateSelector"]
