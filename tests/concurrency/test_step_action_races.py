"""
Concurrency tests for step actions and workflow start.

Two sessions on separate connections race for the same transition against
a file-backed SQLite database.  Writers serialize on BEGIN IMMEDIATE, so
exactly one wins and the loser sees the winner's committed state.

Run with:
    pytest tests/concurrency -v -m slow_locks
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

import workflow_kernel.models  # noqa: F401  (registers every table)
from workflow_engines.validator import WorkflowValidator
from workflow_kernel.db.base import Base
from workflow_kernel.db.engine import _install_sqlite_transaction_hooks
from workflow_kernel.domain.workflow import InstanceStatus, StepAction, StepStatus
from workflow_kernel.exceptions import DuplicateInstanceError, StepNotFoundError
from workflow_kernel.models.instance import StepExecutionModel, WorkflowInstanceModel
from workflow_kernel.services.auditor_service import AuditorService
from workflow_services.directory import RecordingNotifier
from workflow_services.template_service import TemplateService
from workflow_services.workflow_engine import WorkflowEngine

from tests.factories import ADMIN_ID, EMPLOYEE_ID, KNOWN_MODULES, trf_template

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def file_engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _install_sqlite_transaction_hooks(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def seeded(file_engine, directory, deterministic_clock):
    """Active travel template committed before the race starts."""
    with Session(file_engine) as session:
        TemplateService(
            session,
            WorkflowValidator(directory, directory, known_modules=KNOWN_MODULES),
            AuditorService(session, deterministic_clock),
            deterministic_clock,
        ).create(trf_template(name="T"), ADMIN_ID)
        session.commit()
    return file_engine


def run_race(file_engine, directory, clock, action, workers=2):
    """Run ``action(engine, worker_index)`` once per worker, released together.

    Returns the outcome of each worker: the DTO on success, or the
    exception it raised.
    """
    barrier = Barrier(workers)

    def worker(index):
        with Session(file_engine) as session:
            wf = WorkflowEngine(
                session, directory, directory, RecordingNotifier(),
                auditor=AuditorService(session, clock), clock=clock,
            )
            barrier.wait(timeout=10)
            try:
                result = action(wf, index)
            except (StepNotFoundError, DuplicateInstanceError) as exc:
                session.rollback()
                return exc
            session.commit()
            return result

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(worker, range(workers)))


def started_instance(file_engine, directory, clock):
    with Session(file_engine) as session:
        wf = WorkflowEngine(
            session, directory, directory, RecordingNotifier(),
            auditor=AuditorService(session, clock), clock=clock,
        )
        instance = wf.start_workflow("trf", "TRF-RACE", {"amount": "900"}, EMPLOYEE_ID)
        session.commit()
    return instance


class TestConcurrentApproval:

    def test_one_of_two_approvers_wins(self, seeded, directory, deterministic_clock):
        instance = started_instance(seeded, directory, deterministic_clock)
        users = ("u-focal", "u-focal-2")

        def approve(wf, index):
            return wf.process_step_action(
                instance.instance_id, 1, StepAction.APPROVE, user_id=users[index],
            )

        outcomes = run_race(seeded, directory, deterministic_clock, approve)

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], StepNotFoundError)
        assert winners[0].current_step_number == 2

        with Session(seeded) as session:
            approved_rows = session.scalar(
                select(func.count()).select_from(StepExecutionModel).where(
                    StepExecutionModel.instance_id == instance.instance_id,
                    StepExecutionModel.status == StepStatus.APPROVED.value,
                )
            )
            pending_rows = session.scalars(
                select(StepExecutionModel).where(
                    StepExecutionModel.instance_id == instance.instance_id,
                    StepExecutionModel.status == StepStatus.PENDING.value,
                )
            ).all()
        assert approved_rows == 1
        assert [r.step_number for r in pending_rows] == [2]


class TestConcurrentStart:

    def test_one_live_instance_per_entity(self, seeded, directory, deterministic_clock):
        def start(wf, _index):
            return wf.start_workflow("trf", "TRF-DUP", {"amount": "50"}, EMPLOYEE_ID)

        outcomes = run_race(seeded, directory, deterministic_clock, start)

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], DuplicateInstanceError)

        with Session(seeded) as session:
            live = session.scalars(
                select(WorkflowInstanceModel).where(
                    WorkflowInstanceModel.entity_id == "TRF-DUP",
                )
            ).all()
        assert len(live) == 1
        assert live[0].status == InstanceStatus.ACTIVE.value
