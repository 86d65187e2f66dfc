"""
Tests for the case/task orchestrator.

Every collaborator runs in memory, against a fixed clock unless a test
case asks for the wall clock; notifications land in an in-memory outbox.
"""

from datetime import timedelta
from unittest.mock import patch

from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from apps.cases.choices import CasePhase, CaseType
from apps.cases.repositories import DjangoCaseRepository, InMemoryCaseRepository
from apps.cases.services import CaseTransitionService
from apps.cases.state_machine import StateMachine
from apps.common.exceptions import NotFound, ValidationError
from apps.common.ports import FixedClock, SystemClock
from apps.notifications.services import InMemoryNotificationOutbox, NotificationService
from apps.tasks.choices import TaskPriority, TaskStatus
from apps.tasks.models import ScheduledTaskRecord
from apps.tasks.repositories import DjangoTaskRepository, InMemoryTaskRepository
from apps.tasks.scheduling import TaskSchedulingService
from apps.tasks.tests import ScheduleRequestFactory
from apps.users.choices import UserRole
from apps.users.directory import UserDirectory
from apps.workflows.choices import HealthStatus
from apps.workflows.engines import (
    CaseTaskIntegration,
    CaseTaskOrchestrator,
    build_case_task_orchestrator,
    get_case_task_orchestrator,
)
from apps.workflows.entities import TaskTemplate
from apps.workflows.models import BusinessRuleRecord
from apps.workflows.repositories import DjangoRuleRepository, InMemoryRuleRepository
from apps.workflows.rules import BusinessRuleEngine
from apps.workflows.templates import WorkflowEngine
from apps.workflows.tests import NOW, CaseStateFactory, build_directory


class UnreachableOutbox:
    """Notification port whose broker is down."""

    def deliver(self, payload):
        raise ConnectionError('broker unavailable')


class OrchestratorTestMixin:
    """An orchestrator over in-memory services and one criminal case at intake."""

    def make_clock(self):
        return FixedClock(NOW)

    def setUp(self):
        self.clock = self.make_clock()
        self.directory = build_directory()
        self.outbox = InMemoryNotificationOutbox()
        self.scheduler = TaskSchedulingService(
            repository=InMemoryTaskRepository(),
            identity=self.directory,
            clock=self.clock,
        )
        self.rule_engine = BusinessRuleEngine(
            repository=InMemoryRuleRepository(),
            identity=self.directory,
            clock=self.clock,
        )
        self.workflow_engine = WorkflowEngine(clock=self.clock)
        self.case_service = CaseTransitionService(
            repository=InMemoryCaseRepository(),
            machine=StateMachine(enforce_guards=False),
            clock=self.clock,
        )
        self.orchestrator = CaseTaskOrchestrator(
            case_service=self.case_service,
            workflow_engine=self.workflow_engine,
            rule_engine=self.rule_engine,
            scheduler=self.scheduler,
            notifications=NotificationService(port=self.outbox, identity=self.directory, clock=self.clock),
            identity=self.directory,
            clock=self.clock,
        )
        self.case = self.case_service.open_case(CaseStateFactory(case_id='CASE-1', title='State v. Doe'))

    def move_to_pre_proceeding(self, **kwargs):
        integration = CaseTaskIntegration(
            case_id='CASE-1',
            to_phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            user_id='att-1',
            user_role=UserRole.ATTORNEY,
            **kwargs,
        )
        return self.orchestrator.handle_case_phase_transition(integration)

    def schedule(self, **kwargs):
        kwargs.setdefault('case_id', 'CASE-1')
        return self.scheduler.schedule_task(ScheduleRequestFactory(**kwargs))


class PhaseTransitionTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test the phase transition pipeline end to end."""

    def test_criminal_case_enters_pre_proceeding(self):
        result = self.move_to_pre_proceeding()

        self.assertTrue(result.success, result.errors)
        self.assertTrue(result.phase_transition_valid)
        self.assertEqual(result.from_phase, CasePhase.INTAKE_RISK_ASSESSMENT)
        self.assertEqual(result.to_phase, CasePhase.PRE_PROCEEDING_PREPARATION)
        self.assertEqual(len(result.tasks_created), 1)

        task = result.tasks_created[0]
        self.assertEqual(task.title, 'Prepare Bail Hearing - State v. Doe')
        self.assertEqual(task.priority, TaskPriority.URGENT)
        self.assertEqual(task.due_date, NOW + timedelta(days=1))
        self.assertEqual(task.scheduled_time, NOW)
        self.assertEqual(task.conflicts, [])
        self.assertEqual(task.metadata['template_id'], 'criminal_bail_hearing')
        self.assertIn(task.task_id, result.priority_scores)
        self.assertEqual(self.case_service.get_case('CASE-1').phase, CasePhase.PRE_PROCEEDING_PREPARATION)

    def test_generated_urgent_task_goes_to_best_attorney(self):
        result = self.move_to_pre_proceeding()

        task = result.tasks_created[0]
        self.assertEqual(task.assigned_to, 'att-2')
        self.assertEqual(task.assigned_by, 'att-1')

        templates = sorted(payload['template'] for payload in self.outbox.sent)
        self.assertEqual(templates, ['high_priority_task_assigned', 'task_assigned', 'tasks_created'])
        self.assertEqual(result.notifications_sent, 3)
        self.assertEqual(self.outbox.for_recipient('att-2')[0]['template'], 'task_assigned')
        self.assertEqual(self.outbox.for_recipient('admin-1')[0]['template'], 'high_priority_task_assigned')

    def test_rejected_transition_stops_the_pipeline(self):
        integration = CaseTaskIntegration(
            case_id='CASE-1',
            to_phase=CasePhase.FORMAL_PROCEEDINGS,
            user_id='att-1',
            user_role=UserRole.ATTORNEY,
        )

        result = self.orchestrator.handle_case_phase_transition(integration)

        self.assertFalse(result.success)
        self.assertFalse(result.phase_transition_valid)
        self.assertTrue(result.errors)
        self.assertEqual(result.tasks_created, [])
        self.assertEqual(self.outbox.sent, [])
        self.assertEqual(self.case_service.get_case('CASE-1').phase, CasePhase.INTAKE_RISK_ASSESSMENT)

    def test_role_without_authority_is_rejected(self):
        result = self.orchestrator.handle_case_phase_transition(CaseTaskIntegration(
            case_id='CASE-1',
            to_phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            user_id='asst-1',
            user_role=UserRole.ASSISTANT,
        ))

        self.assertFalse(result.phase_transition_valid)
        self.assertEqual(result.error_code, 'permission_denied')

    def test_unknown_case(self):
        result = self.orchestrator.handle_case_phase_transition(CaseTaskIntegration(
            case_id='CASE-404',
            to_phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            user_id='att-1',
            user_role=UserRole.ATTORNEY,
        ))

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, 'not_found')
        self.assertEqual(result.errors, ['Case CASE-404 not found'])

    def test_stale_expected_phase_is_rejected(self):
        result = self.move_to_pre_proceeding(from_phase=CasePhase.FORMAL_PROCEEDINGS)

        self.assertFalse(result.phase_transition_valid)
        self.assertEqual(result.error_code, 'stale_phase')
        self.assertEqual(self.case_service.get_case('CASE-1').phase, CasePhase.INTAKE_RISK_ASSESSMENT)

    def test_task_without_offset_gets_default_due_date(self):
        self.workflow_engine.add_template(TaskTemplate(
            id='criminal_discovery',
            name='Discovery Requests',
            case_type=CaseType.CRIMINAL_DEFENSE,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='File Discovery Requests - {case_title}',
        ))

        result = self.move_to_pre_proceeding()

        discovery = next(task for task in result.tasks_created if task.title.startswith('File Discovery'))
        self.assertEqual(discovery.due_date, NOW + timedelta(days=9))

    def test_rule_failures_become_warnings(self):
        self.rule_engine.identity = UserDirectory(
            user for user in build_directory().list_users() if user.role != UserRole.ATTORNEY
        )

        result = self.move_to_pre_proceeding()

        self.assertTrue(result.success)
        self.assertIn(
            'Rule high_priority_assignment: Action assign_task failed and rule execution stopped',
            result.warnings,
        )
        self.assertEqual(result.tasks_created[0].assigned_to, 'att-1')

    def test_scheduling_failures_are_collected(self):
        self.workflow_engine.add_template(TaskTemplate(
            id='criminal_bad_title',
            name='Blank',
            case_type=CaseType.CRIMINAL_DEFENSE,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='   ',
            due_date_offset_days=2,
        ))

        result = self.move_to_pre_proceeding()

        self.assertFalse(result.success)
        self.assertTrue(result.phase_transition_valid)
        self.assertEqual(len(result.tasks_created), 1)
        self.assertTrue(any(error.startswith("Failed to schedule task '   '") for error in result.errors))

    def test_overdue_tasks_on_the_case_raise_a_warning(self):
        self.schedule(scheduled_time=NOW, due_date=NOW + timedelta(hours=1))
        self.clock.advance(hours=2)

        result = self.move_to_pre_proceeding()

        self.assertIn('Case has 1 overdue tasks', result.warnings)

    def test_tasks_dropped_by_the_scheduler_send_no_notifications(self):
        rejection = ValidationError(['Assignee is required'])
        with patch.object(self.scheduler, 'schedule_task', side_effect=rejection):
            result = self.move_to_pre_proceeding()

        self.assertTrue(result.phase_transition_valid)
        self.assertEqual(result.tasks_created, [])
        self.assertEqual(result.notifications_sent, 0)
        self.assertEqual(self.outbox.sent, [])

    def test_summary_counts_only_scheduled_tasks(self):
        self.workflow_engine.add_template(TaskTemplate(
            id='criminal_bad_title',
            name='Blank',
            case_type=CaseType.CRIMINAL_DEFENSE,
            phase=CasePhase.PRE_PROCEEDING_PREPARATION,
            title_template='   ',
            due_date_offset_days=2,
        ))

        self.move_to_pre_proceeding()

        summary = next(payload for payload in self.outbox.sent if payload['template'] == 'tasks_created')
        self.assertTrue(summary['message'].startswith('1 new tasks'))

    def test_notification_failure_after_commit_is_reported(self):
        self.orchestrator.notifications = NotificationService(
            port=UnreachableOutbox(), identity=self.directory, clock=self.clock,
        )

        result = self.move_to_pre_proceeding()

        self.assertFalse(result.success)
        self.assertTrue(result.phase_transition_valid)
        self.assertEqual(len(result.tasks_created), 1)
        self.assertIn('Notification delivery failed: broker unavailable', result.errors)
        self.assertEqual(self.case_service.get_case('CASE-1').phase, CasePhase.PRE_PROCEEDING_PREPARATION)

    def test_priority_scoring_failure_keeps_the_scheduled_task(self):
        scoring = patch.object(
            self.orchestrator.priority_service, 'calculate_priority', side_effect=RuntimeError('scorer down'),
        )
        with scoring:
            result = self.move_to_pre_proceeding()

        self.assertEqual(len(result.tasks_created), 1)
        self.assertEqual(result.priority_scores, {})
        self.assertIn(
            "Scheduling task 'Prepare Bail Hearing - State v. Doe' failed: scorer down",
            result.errors,
        )
        self.assertEqual(result.notifications_sent, 3)


class WallClockPhaseTransitionTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test the pipeline on the system clock, where each step reads a later time."""

    def make_clock(self):
        return SystemClock()

    def test_generated_tasks_are_scheduled(self):
        started = timezone.now()

        result = self.move_to_pre_proceeding()

        self.assertTrue(result.success, result.errors)
        self.assertEqual(len(result.tasks_created), 1)
        task = result.tasks_created[0]
        self.assertGreaterEqual(task.scheduled_time, started)
        self.assertEqual(task.title, 'Prepare Bail Hearing - State v. Doe')
        self.assertEqual(result.notifications_sent, 3)

    def test_review_follow_up_is_scheduled(self):
        task = self.schedule(
            title='Draft Plea Agreement',
            scheduled_time=timezone.now() + timedelta(hours=1),
            metadata={'value': 25000},
        )

        result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1', UserRole.ATTORNEY)

        self.assertTrue(result.success, result.errors)
        self.assertEqual(len(result.follow_up_tasks), 1)


class DueDateCalculationTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test default due dates by phase and case type."""

    def test_phase_days_scaled_by_case_type(self):
        expectations = [
            (CasePhase.INTAKE_RISK_ASSESSMENT, CaseType.CRIMINAL_DEFENSE, 4),
            (CasePhase.FORMAL_PROCEEDINGS, CaseType.MEDICAL_MALPRACTICE, 28),
            (CasePhase.PRE_PROCEEDING_PREPARATION, CaseType.CONTRACT_DISPUTE, 7),
            (CasePhase.RESOLUTION_POST_PROCEEDING, CaseType.ADMINISTRATIVE_CASE, 11),
            (CasePhase.CLOSURE_REVIEW_ARCHIVING, CaseType.DEMOLITION_CASE, 4),
        ]
        for phase, case_type, days in expectations:
            with self.subTest(phase=phase, case_type=case_type):
                self.assertEqual(
                    self.orchestrator.calculate_default_due_date(phase, case_type),
                    NOW + timedelta(days=days),
                )

    def test_explicit_start(self):
        start = NOW + timedelta(days=10)

        due = self.orchestrator.calculate_default_due_date(
            CasePhase.FORMAL_PROCEEDINGS, CaseType.CONTRACT_DISPUTE, start=start,
        )

        self.assertEqual(due, start + timedelta(days=14))


class TaskCompletionTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test completion gating and dependent activation."""

    def test_plain_completion(self):
        task = self.schedule()

        result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1', UserRole.ATTORNEY)

        self.assertTrue(result.success)
        self.assertTrue(result.completed)
        self.assertEqual(result.follow_up_tasks, [])
        self.assertEqual(self.scheduler.get_task(task.task_id).status, TaskStatus.COMPLETED)

    def test_high_value_task_requires_quality_review(self):
        task = self.schedule(title='Draft Plea Agreement', metadata={'value': 25000})

        result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1', UserRole.ATTORNEY)

        self.assertTrue(result.success)
        self.assertFalse(result.completed)
        self.assertEqual(self.scheduler.get_task(task.task_id).status, TaskStatus.PENDING)
        self.assertIn(f"Task {task.task_id} requires quality review before completion", result.warnings)

        self.assertEqual(len(result.follow_up_tasks), 1)
        review = result.follow_up_tasks[0]
        self.assertEqual(review.title, 'Quality Review - Draft Plea Agreement')
        self.assertEqual(review.assigned_to, 'att-2')
        self.assertEqual(review.priority, TaskPriority.HIGH)
        self.assertEqual(review.due_date, NOW + timedelta(hours=24))
        self.assertEqual(review.metadata['review_of'], task.task_id)
        self.assertEqual(
            review.metadata['checklist'],
            ['document_accuracy', 'client_communication', 'deadline_compliance'],
        )

    def test_completion_activates_waiting_dependents(self):
        first = self.schedule()
        second = self.schedule(status=TaskStatus.WAITING_DEPENDENCIES, dependencies=[first.task_id])

        result = self.orchestrator.handle_task_completion(first.task_id, 'CASE-1', 'att-1', UserRole.ATTORNEY)

        self.assertTrue(result.completed)
        self.assertEqual(self.scheduler.get_task(second.task_id).status, TaskStatus.PENDING)
        self.assertEqual([update.id for update in result.updated_tasks], [second.task_id])
        self.assertEqual(result.updated_tasks[0].previous_values, {'status': 'waiting_dependencies'})
        self.assertEqual([payload.template for payload in result.notifications], ['task_status_updated'])

    def test_notification_failure_does_not_undo_completion(self):
        first = self.schedule()
        second = self.schedule(status=TaskStatus.WAITING_DEPENDENCIES, dependencies=[first.task_id])
        self.orchestrator.notifications = NotificationService(
            port=UnreachableOutbox(), identity=self.directory, clock=self.clock,
        )

        result = self.orchestrator.handle_task_completion(first.task_id, 'CASE-1', 'att-1', UserRole.ATTORNEY)

        self.assertTrue(result.completed)
        self.assertEqual(result.errors, ['Notification delivery failed: broker unavailable'])
        self.assertEqual(self.scheduler.get_task(second.task_id).status, TaskStatus.PENDING)

    def test_rule_evaluation_failure_leaves_task_open(self):
        task = self.schedule()

        with patch.object(self.rule_engine, 'evaluate_rules', side_effect=RuntimeError('rule store offline')):
            result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1')

        self.assertFalse(result.completed)
        self.assertEqual(result.errors, ['Rule evaluation failed: rule store offline'])
        self.assertEqual(self.scheduler.get_task(task.task_id).status, TaskStatus.PENDING)

    def test_unknown_task(self):
        result = self.orchestrator.handle_task_completion('task-404', 'CASE-1', 'att-1')

        self.assertFalse(result.success)
        self.assertEqual(result.errors, ['Task not found'])

    def test_task_of_another_case(self):
        task = self.schedule(case_id='CASE-9')

        result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1')

        self.assertEqual(result.errors, ['Task not found'])

    def test_finished_task_cannot_complete_again(self):
        task = self.schedule()
        self.scheduler.cancel_task(task.task_id)

        result = self.orchestrator.handle_task_completion(task.task_id, 'CASE-1', 'att-1')

        self.assertEqual(result.errors, [f"Task {task.task_id} is already cancelled"])


class AutomationTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test periodic overdue processing and recurrence."""

    def test_overdue_task_is_flagged_and_escalated(self):
        task = self.schedule(assigned_to='asst-1', scheduled_time=NOW, due_date=NOW + timedelta(hours=2))
        self.clock.advance(days=1)

        report = self.orchestrator.process_overdue_tasks()

        self.assertEqual(report.overdue_tasks_flagged, 1)
        self.assertEqual(report.tasks_evaluated, 1)
        self.assertEqual(report.escalations, 1)
        self.assertEqual(report.errors, [])

        escalated = self.scheduler.get_task(task.task_id)
        self.assertEqual(escalated.status, TaskStatus.OVERDUE)
        self.assertEqual(escalated.escalation_level, 1)
        self.assertEqual(escalated.assigned_to, 'att-2')
        self.assertEqual(escalated.due_date, NOW + timedelta(hours=26))

        templates = sorted(payload['template'] for payload in self.outbox.sent)
        self.assertEqual(templates, ['task_escalated', 'task_escalated', 'task_escalated_to_attorney'])
        self.assertEqual(report.notifications_sent, 3)

    def test_nothing_overdue(self):
        self.schedule(due_date=NOW + timedelta(days=3))

        report = self.orchestrator.process_overdue_tasks()

        self.assertEqual((report.overdue_tasks_flagged, report.tasks_evaluated), (0, 0))

    def test_one_failing_overdue_task_does_not_stop_the_run(self):
        for hours in (1, 3):
            self.schedule(scheduled_time=NOW + timedelta(hours=hours), due_date=NOW + timedelta(hours=hours + 1))
        self.clock.advance(days=1)

        with patch.object(self.rule_engine, 'evaluate_rules', side_effect=RuntimeError('rule store offline')):
            report = self.orchestrator.process_overdue_tasks()

        self.assertEqual(report.overdue_tasks_flagged, 2)
        self.assertEqual(report.tasks_evaluated, 0)
        self.assertEqual(len(report.errors), 2)
        self.assertTrue(all(error.endswith('failed: rule store offline') for error in report.errors))

    def test_scheduled_automations_run_recurrence_first(self):
        with patch.object(self.scheduler, 'process_recurring_tasks', return_value=['a', 'b']) as recurring:
            report = self.orchestrator.process_scheduled_automations()

        recurring.assert_called_once_with()
        self.assertEqual(report.recurring_tasks_created, 2)


class ReportingTestCase(OrchestratorTestMixin, SimpleTestCase):
    """Test orchestration views, statistics and health."""

    def test_orchestration_view_of_a_case(self):
        self.move_to_pre_proceeding()

        view = self.orchestrator.get_task_workflow_orchestration('CASE-1')

        self.assertEqual(view.phase, CasePhase.PRE_PROCEEDING_PREPARATION)
        self.assertEqual(view.active_tasks, 1)
        self.assertEqual(view.overdue_tasks, 0)
        self.assertEqual(view.upcoming_deadlines, 1)
        self.assertEqual(view.business_rules_evaluated, 8)
        self.assertAlmostEqual(view.workload_balance, 0.1)

    def test_orchestration_view_of_unknown_case(self):
        with self.assertRaises(NotFound):
            self.orchestrator.get_task_workflow_orchestration('CASE-404')

    def test_statistics_reward_automation(self):
        self.move_to_pre_proceeding()

        stats = self.orchestrator.get_case_task_statistics('CASE-1')

        self.assertEqual(stats.total_tasks, 1)
        self.assertEqual(stats.high_priority_tasks, 1)
        self.assertEqual(stats.automation_efficiency, 100.0)
        self.assertEqual(stats.workflow_health, 130.0)

    def test_statistics_penalize_overdue_work(self):
        task = self.schedule(scheduled_time=NOW, due_date=NOW + timedelta(hours=2))
        self.clock.advance(days=1)

        stats = self.orchestrator.get_case_task_statistics('CASE-1')

        self.assertEqual(stats.overdue_tasks, 1)
        self.assertEqual(stats.workflow_health, 90.0)

        self.scheduler.complete_task(task.task_id)
        stats = self.orchestrator.get_case_task_statistics('CASE-1')
        self.assertEqual(stats.completed_tasks, 1)
        self.assertEqual(stats.average_completion_time, 24.0)

    def test_integration_health(self):
        health = self.orchestrator.get_integration_health()

        self.assertEqual(health['overall'], HealthStatus.HEALTHY)
        self.assertEqual(health['workflow_engine']['templates_count'], 6)
        self.assertEqual(health['business_rules']['active_rules'], 8)
        self.assertEqual(health['case_integration']['supported_case_types'], 9)

    def test_health_degrades_without_rules(self):
        self.orchestrator.rule_engine = BusinessRuleEngine(clock=self.clock, load_defaults=False)

        health = self.orchestrator.get_integration_health()

        self.assertEqual(health['business_rules']['status'], HealthStatus.DEGRADED)
        self.assertEqual(health['overall'], HealthStatus.DEGRADED)

    def test_case_histories(self):
        self.move_to_pre_proceeding()

        self.assertEqual(len(self.orchestrator.get_case_workflow_history('CASE-1')), 1)
        self.assertEqual(len(self.orchestrator.get_case_schedule_history('CASE-1')), 1)
        self.assertTrue(self.orchestrator.get_case_rule_history('CASE-1'))
        self.assertEqual(self.orchestrator.get_case_rule_history('CASE-2'), [])

    def test_phase_queries(self):
        self.assertIn(
            CasePhase.PRE_PROCEEDING_PREPARATION,
            self.orchestrator.get_available_phase_transitions('CASE-1', UserRole.ATTORNEY),
        )
        self.assertEqual(
            [template.id for template in self.orchestrator.get_case_task_templates(
                CaseType.MEDICAL_MALPRACTICE, CasePhase.INTAKE_RISK_ASSESSMENT,
            )],
            ['medical_record_review'],
        )
        self.assertIn(
            'arrest_records',
            self.orchestrator.get_phase_requirements(CasePhase.INTAKE_RISK_ASSESSMENT, CaseType.CRIMINAL_DEFENSE),
        )


class OrchestratorFactoryTestCase(TestCase):
    """Test the settings-driven orchestrator the Celery jobs use."""

    def setUp(self):
        self.addCleanup(get_case_task_orchestrator.cache_clear)

    def test_project_settings_persist_to_the_database(self):
        orchestrator = build_case_task_orchestrator()

        self.assertIsInstance(orchestrator.scheduler.repository, DjangoTaskRepository)
        self.assertIsInstance(orchestrator.case_service.repository, DjangoCaseRepository)
        self.assertIsInstance(orchestrator.rule_engine.repository, DjangoRuleRepository)
        self.assertIs(orchestrator.priority_service.repository, orchestrator.scheduler.repository)
        self.assertEqual(BusinessRuleRecord.objects.count(), 8)

    @override_settings(CASE_ORCHESTRATION={})
    def test_built_in_defaults_stay_in_memory(self):
        orchestrator = build_case_task_orchestrator()

        self.assertIsInstance(orchestrator.scheduler.repository, InMemoryTaskRepository)
        self.assertIsInstance(orchestrator.case_service.repository, InMemoryCaseRepository)
        self.assertIsInstance(orchestrator.rule_engine.repository, InMemoryRuleRepository)

    def test_process_wide_instance_is_reused(self):
        self.assertIs(get_case_task_orchestrator(), get_case_task_orchestrator())

    def test_overdue_check_sees_tasks_written_by_another_process(self):
        writer = TaskSchedulingService(repository=DjangoTaskRepository(), clock=FixedClock(NOW))
        task = writer.schedule_task(ScheduleRequestFactory(
            case_id='CASE-1', due_date=NOW + timedelta(days=1, hours=2),
        ))

        report = build_case_task_orchestrator().process_overdue_tasks()

        self.assertEqual(report.overdue_tasks_flagged, 1)
        self.assertEqual(ScheduledTaskRecord.objects.get(task_id=task.task_id).status, TaskStatus.OVERDUE)
