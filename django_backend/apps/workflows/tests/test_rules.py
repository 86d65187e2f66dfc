"""
Tests for the business rule engine.
"""

from datetime import timedelta
from unittest.mock import Mock, patch

from django.test import SimpleTestCase, TestCase, override_settings

from apps.common.choices import ConditionOperator
from apps.common.exceptions import NotFound, ValidationError
from apps.common.ports import FixedClock
from apps.tasks.choices import TaskPriority, TaskStatus
from apps.users.choices import UserRole
from apps.workflows.choices import (
    ActionType,
    AssignmentStrategy,
    DeadlineStrategy,
    FailureStrategy,
    LogicalOperator,
    RuleCategory,
)
from apps.workflows.entities import (
    AssignTaskAction,
    ChangePriorityAction,
    Condition,
    CreateDependencyAction,
    EscalateTaskAction,
    EscalationPath,
    ReassignTaskAction,
    RequestReviewAction,
    SendNotificationAction,
    SetDeadlineAction,
    UpdateStatusAction,
)
from apps.workflows.models import BusinessRuleRecord
from apps.workflows.repositories import DjangoRuleRepository, InMemoryRuleRepository
from apps.workflows.rules import BusinessRuleEngine
from apps.workflows.tests import (
    NOW,
    BusinessRuleFactory,
    ConditionFactory,
    WorkflowContextFactory,
    build_directory,
)


class RuleEngineTestMixin:
    """An engine over an empty in-memory rule store and a small firm."""

    def setUp(self):
        self.clock = FixedClock(NOW)
        self.directory = build_directory()
        self.engine = BusinessRuleEngine(
            repository=InMemoryRuleRepository(),
            identity=self.directory,
            clock=self.clock,
            load_defaults=False,
        )

    def context_for_task(self, **task):
        context = WorkflowContextFactory()
        context.metadata['task'] = {'id': 'task-1', 'priority': 'medium', 'status': 'pending', **task}
        return context


class ConditionEvaluationTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test condition combination and scoring."""

    def test_rule_without_conditions_always_matches(self):
        outcome = self.engine.evaluate_conditions([], WorkflowContextFactory())

        self.assertTrue(outcome.matched)
        self.assertEqual(outcome.score, 100.0)
        self.assertEqual(outcome.confidence, 1.0)

    def test_and_requires_every_condition(self):
        conditions = [
            ConditionFactory(field='task.priority', value='low', weight=1.0),
            ConditionFactory(field='task.status', value='pending', weight=3.0),
        ]

        outcome = self.engine.evaluate_conditions(conditions, WorkflowContextFactory())

        self.assertFalse(outcome.matched)
        self.assertEqual(outcome.score, 7500.0)
        self.assertEqual(outcome.confidence, 0.5)

    def test_or_matches_when_any_condition_holds(self):
        conditions = [
            ConditionFactory(field='task.priority', value='low', logical_operator=LogicalOperator.OR),
            ConditionFactory(field='task.status', value='pending'),
        ]

        outcome = self.engine.evaluate_conditions(conditions, WorkflowContextFactory())

        self.assertTrue(outcome.matched)
        self.assertEqual(outcome.score, 5000.0)

    def test_first_matching_or_condition_ends_the_scan(self):
        conditions = [
            ConditionFactory(field='task.priority', value='high', logical_operator=LogicalOperator.OR),
            ConditionFactory(field='task.status', value='pending', logical_operator=LogicalOperator.OR),
            ConditionFactory(field='task.assigned_to', value='nobody'),
        ]

        outcome = self.engine.evaluate_conditions(conditions, WorkflowContextFactory())

        self.assertTrue(outcome.matched)
        self.assertEqual(outcome.score, 10000.0)
        self.assertAlmostEqual(outcome.confidence, 2 / 3)

    def test_now_marker_compares_against_evaluation_time(self):
        context = self.context_for_task(due_date=NOW - timedelta(hours=1))
        condition = Condition(field='task.due_date', operator=ConditionOperator.LESS_THAN, value='$now')

        self.assertTrue(self.engine.evaluate_conditions([condition], context).matched)

        context.metadata['task']['due_date'] = NOW + timedelta(hours=1)
        self.assertFalse(self.engine.evaluate_conditions([condition], context).matched)


class RuleEvaluationTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test rule ordering, action execution and failure strategies."""

    def test_active_rules_are_evaluated_in_priority_order(self):
        self.engine.add_rule(BusinessRuleFactory(id='late', priority=20))
        self.engine.add_rule(BusinessRuleFactory(id='early', priority=5))
        self.engine.add_rule(BusinessRuleFactory(id='off', priority=1, is_active=False))

        results = self.engine.evaluate_rules(WorkflowContextFactory())

        self.assertEqual([result.rule_id for result in results], ['early', 'late'])
        self.assertTrue(all(result.matched for result in results))

    def test_matching_rule_returns_intents(self):
        self.engine.add_rule(BusinessRuleFactory(id='notify'))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertTrue(result.succeeded)
        self.assertEqual(len(result.intents), 1)
        intent = result.intents[0]
        self.assertEqual(intent.action_type, ActionType.SEND_NOTIFICATION)
        self.assertEqual(intent.result['recipients'], ['assignee'])
        self.assertEqual(intent.result['case_id'], 'CASE-1')
        self.assertEqual(intent.result['task_id'], 'task-1')

    def test_unmatched_rule_runs_no_actions(self):
        self.engine.add_rule(BusinessRuleFactory(conditions=[ConditionFactory(value='low')]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertFalse(result.matched)
        self.assertEqual(result.results, [])

    def test_stop_strategy_aborts_remaining_actions(self):
        self.engine.add_rule(BusinessRuleFactory(id='stopper', actions=[
            AssignTaskAction(id='assign', required_role=UserRole.ARCHIVIST, failure_strategy=FailureStrategy.STOP),
            SendNotificationAction(id='notify', template='never_sent'),
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertEqual(len(result.results), 1)
        self.assertFalse(result.results[0].success)
        self.assertEqual(result.errors, ['Action assign_task failed and rule execution stopped'])
        self.assertFalse(result.succeeded)

    def test_continue_strategy_records_a_warning(self):
        self.engine.add_rule(BusinessRuleFactory(id='continuer', actions=[
            AssignTaskAction(id='assign', required_role=UserRole.ARCHIVIST),
            SendNotificationAction(id='notify', template='still_sent'),
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertEqual(len(result.results), 2)
        self.assertEqual(result.errors, [])
        self.assertEqual(
            result.warnings,
            ['Action assign_task failed: No suitable assignee found using workload_balance strategy'],
        )
        self.assertEqual([intent.action_id for intent in result.intents], ['notify'])

    def test_rollback_runs_compensators_in_reverse(self):
        compensator = Mock()
        self.engine.register_compensator(ActionType.SEND_NOTIFICATION, compensator)
        self.engine.add_rule(BusinessRuleFactory(id='rollback', actions=[
            SendNotificationAction(id='notify', template='withdrawn'),
            AssignTaskAction(id='assign', required_role=UserRole.ARCHIVIST,
                             failure_strategy=FailureStrategy.ROLLBACK),
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        compensator.assert_called_once()
        self.assertEqual(compensator.call_args[0][0].action_id, 'notify')
        self.assertTrue(result.results[0].rolled_back)
        self.assertEqual(result.intents, [])
        self.assertEqual(result.errors, ['Action assign_task failed and rule actions were rolled back'])

    def test_rollback_without_compensator_is_reported(self):
        self.engine.add_rule(BusinessRuleFactory(id='rollback', actions=[
            ChangePriorityAction(id='bump', priority=TaskPriority.URGENT),
            AssignTaskAction(id='assign', required_role=UserRole.ARCHIVIST,
                             failure_strategy=FailureStrategy.ROLLBACK),
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertIn('No compensating handler for change_priority', result.warnings)
        self.assertEqual(result.intents, [])

    @override_settings(CASE_ORCHESTRATION={'MAX_ACTIONS_PER_RULE': 2})
    def test_actions_per_rule_are_bounded(self):
        self.engine.add_rule(BusinessRuleFactory(id='chatty', actions=[
            SendNotificationAction(id=f"notify_{n}", template='spam') for n in range(3)
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertEqual(len(result.results), 2)
        self.assertIn('Rule chatty declares 3 actions; only the first 2 were executed', result.warnings)

    def test_cascade_is_bounded_by_depth(self):
        self.engine.add_rule(BusinessRuleFactory(id='cascader', conditions=[], actions=[
            UpdateStatusAction(id='start', new_status=TaskStatus.IN_PROGRESS, cascade=True),
        ]))

        result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        depth = 0
        while result.cascaded_results:
            result = result.cascaded_results[0]
            depth += 1
        self.assertEqual(depth, 3)
        self.assertIn('Cascade depth limit of 3 reached; re-evaluation skipped', result.warnings)
        self.assertEqual(self.engine.get_rule('cascader').trigger_count, 4)

    def test_unexpected_failure_is_captured_on_the_rule(self):
        self.engine.add_rule(BusinessRuleFactory(id='broken'))

        with patch.object(self.engine, 'evaluate_conditions', side_effect=RuntimeError('boom')):
            result = self.engine.evaluate_rules(WorkflowContextFactory())[0]

        self.assertEqual(result.errors, ['Rule evaluation failed: boom'])
        self.assertEqual(self.engine.get_rule('broken').failure_count, 1)


class AssignmentActionTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test assignee selection strategies."""

    def test_workload_strategy_picks_least_loaded_candidate(self):
        action = AssignTaskAction(id='assign', required_role=UserRole.ATTORNEY)

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertTrue(result.success)
        self.assertEqual(result.result['assigned_to'], 'att-2')
        self.assertEqual(result.result['assignee_role'], UserRole.ATTORNEY)

    def test_workload_threshold_excludes_busy_users(self):
        action = AssignTaskAction(id='assign', required_role=UserRole.ATTORNEY, max_workload_threshold=0.05)

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'No suitable assignee found using workload_balance strategy')

    def test_expertise_strategy_honours_required_specializations(self):
        action = AssignTaskAction(id='assign', strategy=AssignmentStrategy.EXPERTISE_BASED)

        result = self.engine.execute_action(action, self.context_for_task(required_expertise='criminal'))

        self.assertEqual(result.result['assigned_to'], 'att-1')

    def test_expertise_strategy_uses_role_matrix(self):
        action = AssignTaskAction(id='assign', strategy=AssignmentStrategy.EXPERTISE_BASED, min_expertise_score=0.7)

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertEqual(result.result['assigned_to'], 'att-2')

    def test_priority_strategy_picks_best_score(self):
        action = AssignTaskAction(id='assign', strategy=AssignmentStrategy.PRIORITY_BASED, notify_immediately=True)

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertEqual(result.result['assigned_to'], 'att-2')
        self.assertTrue(result.result['notify_immediately'])

    def test_candidates_are_scored_on_expertise_availability_and_activity(self):
        candidates = self.engine.find_assignment_candidates(self.context_for_task(), role=UserRole.ATTORNEY)

        self.assertEqual([candidate.user_id for candidate in candidates], ['att-2', 'att-1'])
        self.assertAlmostEqual(candidates[0].score, 0.6 * 0.9 + 0.3 * 0.9 + 0.1)
        self.assertAlmostEqual(candidates[1].current_workload, 0.3)
        self.assertEqual(candidates[1].expertise, ('criminal',))

    def test_reassignment_skips_current_assignee(self):
        action = ReassignTaskAction(id='move', required_role=UserRole.ATTORNEY, reason='Conflict of interest')

        result = self.engine.execute_action(action, self.context_for_task(assigned_to='att-2'))

        self.assertEqual(result.result['reassigned_to'], 'att-1')
        self.assertEqual(result.result['previous_assignee'], 'att-2')

    def test_no_identity_means_no_candidates(self):
        self.engine.identity = None

        result = self.engine.execute_action(AssignTaskAction(id='assign'), self.context_for_task())

        self.assertFalse(result.success)


class EscalationActionTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test escalation along the role ladder."""

    def test_assistant_escalates_to_least_loaded_attorney(self):
        context = self.context_for_task(assigned_to='asst-1', escalation_level=0)

        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), context)

        self.assertTrue(result.success)
        self.assertEqual(result.result['escalation_level'], 1)
        self.assertEqual(result.result['to_role'], UserRole.ATTORNEY)
        self.assertEqual(result.result['escalated_to'], 'att-2')
        self.assertFalse(result.result['approval_required'])
        self.assertEqual(result.result['notifications'][0]['template'], 'task_escalated_to_attorney')

    def test_second_level_requires_approval(self):
        context = self.context_for_task(assignee_role=UserRole.ASSISTANT.value, escalation_level=1)

        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), context)

        self.assertEqual(result.result['escalated_to'], 'admin-1')
        self.assertTrue(result.result['approval_required'])

    def test_missing_next_level_fails(self):
        context = self.context_for_task(assigned_to='att-1', escalation_level=1)

        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), context)

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'No next escalation level found for level 1')

    def test_role_without_path_fails(self):
        context = self.context_for_task(assignee_role=UserRole.ARCHIVIST.value)

        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), context)

        self.assertEqual(result.error, 'No escalation path defined for role: archivist')

    def test_unassigned_task_cannot_escalate(self):
        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), self.context_for_task())

        self.assertEqual(result.error, 'Cannot escalate task without current assignee role')

    def test_custom_path_replaces_level(self):
        self.engine.add_escalation_path(EscalationPath(
            level=2, from_role=UserRole.ATTORNEY, to_role=UserRole.ADMIN, approval_required=True,
        ))
        context = self.context_for_task(assigned_to='att-1', escalation_level=1)

        result = self.engine.execute_action(EscalateTaskAction(id='escalate'), context)

        self.assertTrue(result.success)
        self.assertEqual(
            [path.level for path in self.engine.get_escalation_paths(UserRole.ATTORNEY)['attorney']],
            [1, 2],
        )


class IntentActionTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test the remaining intent handlers."""

    def test_complexity_deadline_has_minimum_extension(self):
        action = SetDeadlineAction(id='deadline', strategy=DeadlineStrategy.COMPLEXITY_BASED)

        short = self.engine.execute_action(action, self.context_for_task(estimated_duration=10))
        long = self.engine.execute_action(action, self.context_for_task(estimated_duration=30))

        self.assertEqual(short.result['new_deadline'], NOW + timedelta(hours=24))
        self.assertEqual(long.result['new_deadline'], NOW + timedelta(hours=36))

    def test_fixed_offset_deadline_moves_current_due_date(self):
        action = SetDeadlineAction(id='deadline', strategy=DeadlineStrategy.FIXED_OFFSET, offset_hours=48)
        due = NOW + timedelta(days=2)

        result = self.engine.execute_action(action, self.context_for_task(due_date=due))

        self.assertEqual(result.result['new_deadline'], due + timedelta(hours=48))
        self.assertEqual(result.result['previous_deadline'], due)

    def test_notification_subject_is_interpolated(self):
        action = SendNotificationAction(id='notify', template='t', subject='Update on {case.id}: {unknown}')

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertEqual(result.result['subject'], 'Update on CASE-1: {unknown}')

    def test_dependency_requires_a_target(self):
        result = self.engine.execute_action(CreateDependencyAction(id='dep'), self.context_for_task())

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'Dependency target is required')

    def test_review_deadline_is_relative_to_evaluation_time(self):
        action = RequestReviewAction(id='review', review_type='compliance', required_role=UserRole.ADMIN,
                                     deadline_offset_hours=48, checklist=('filing_rules',))

        result = self.engine.execute_action(action, self.context_for_task())

        self.assertEqual(result.result['deadline'], NOW + timedelta(hours=48))
        self.assertEqual(result.result['requested_from'], 'admin')
        self.assertEqual(result.result['checklist'], ['filing_rules'])


class RuleStatisticsTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test per-rule counters and engine reporting."""

    def test_counters_track_every_evaluation(self):
        self.engine.add_rule(BusinessRuleFactory(id='hit'))
        self.engine.add_rule(BusinessRuleFactory(id='miss', conditions=[ConditionFactory(value='low')]))

        self.engine.evaluate_rules(WorkflowContextFactory())
        self.engine.evaluate_rules(WorkflowContextFactory())

        hit, miss = self.engine.get_rule('hit'), self.engine.get_rule('miss')
        self.assertEqual((hit.trigger_count, hit.success_count, hit.failure_count), (2, 2, 0))
        self.assertEqual((miss.trigger_count, miss.success_count, miss.failure_count), (2, 0, 0))
        self.assertEqual(hit.last_triggered, NOW)

        stats = self.engine.get_stats()
        self.assertEqual(stats.total_rules, 2)
        self.assertEqual(stats.total_evaluations, 4)
        self.assertEqual(stats.successful_executions, 2)
        self.assertEqual(stats.top_performing_rules[0]['rule_id'], 'hit')

    def test_dry_run_leaves_no_trace(self):
        self.engine.add_rule(BusinessRuleFactory(id='quiet', is_active=False))

        result = self.engine.test_rule('quiet', WorkflowContextFactory())

        self.assertTrue(result.matched)
        self.assertEqual(self.engine.get_rule('quiet').trigger_count, 0)
        self.assertEqual(self.engine.get_evaluation_history(), [])

    def test_dry_run_of_unknown_rule(self):
        with self.assertRaises(NotFound):
            self.engine.test_rule('ghost', WorkflowContextFactory())

    def test_history_is_newest_first(self):
        self.engine.add_rule(BusinessRuleFactory())
        self.engine.evaluate_rules(WorkflowContextFactory(case_id='CASE-1'))
        self.engine.evaluate_rules(WorkflowContextFactory(case_id='CASE-2'))

        history = self.engine.get_evaluation_history(limit=1)

        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].context.case_id, 'CASE-2')

    def test_reset_stats(self):
        self.engine.add_rule(BusinessRuleFactory(id='hit'))
        self.engine.evaluate_rules(WorkflowContextFactory())

        self.assertEqual(self.engine.reset_stats('hit'), 1)
        self.assertEqual(self.engine.get_rule('hit').trigger_count, 0)
        with self.assertRaises(NotFound):
            self.engine.reset_stats('ghost')


class RuleManagementTestCase(RuleEngineTestMixin, SimpleTestCase):
    """Test the rule registry operations."""

    def test_default_rules_are_loaded(self):
        engine = BusinessRuleEngine(repository=InMemoryRuleRepository(), clock=self.clock)

        rules = engine.get_rules()

        self.assertEqual(len(rules), 8)
        self.assertEqual(rules[0].id, 'expertise_based_assignment')
        self.assertEqual(len(engine.get_rules(category=RuleCategory.COMPLIANCE)), 1)

    def test_rule_requires_id_and_name(self):
        with self.assertRaises(ValidationError) as raised:
            self.engine.add_rule(BusinessRuleFactory(id='', name=''))

        self.assertEqual(raised.exception.errors, ['Rule id is required', 'Rule name is required'])

    def test_update_rule(self):
        self.engine.add_rule(BusinessRuleFactory(id='editable', priority=10))

        self.assertTrue(self.engine.update_rule('editable', priority=1, name='Renamed'))
        self.assertFalse(self.engine.update_rule('ghost', priority=1))
        with self.assertRaises(ValidationError):
            self.engine.update_rule('editable', trigger_count=99)

        rule = self.engine.get_rule('editable')
        self.assertEqual((rule.priority, rule.name), (1, 'Renamed'))

    def test_activation_toggles(self):
        self.engine.add_rule(BusinessRuleFactory(id='toggle'))

        self.assertTrue(self.engine.deactivate_rule('toggle'))
        self.assertEqual(self.engine.get_rules(), [])
        self.assertEqual(len(self.engine.get_rules(active_only=False)), 1)

        self.assertTrue(self.engine.activate_rule('toggle'))
        self.assertEqual(len(self.engine.get_rules()), 1)

    def test_delete_rule(self):
        self.engine.add_rule(BusinessRuleFactory(id='doomed'))

        self.assertTrue(self.engine.delete_rule('doomed'))
        self.assertFalse(self.engine.delete_rule('doomed'))
        self.assertIsNone(self.engine.get_rule('doomed'))


class DjangoRuleRepositoryTestCase(TestCase):
    """Test the ORM-backed rule store."""

    def setUp(self):
        self.repository = DjangoRuleRepository()
        self.engine = BusinessRuleEngine(
            repository=self.repository,
            identity=build_directory(),
            clock=FixedClock(NOW),
            load_defaults=False,
        )

    def test_definition_round_trips_through_json(self):
        rule = BusinessRuleFactory(id='stored', actions=[
            EscalateTaskAction(id='escalate', deadline_extension_hours=12, failure_strategy=FailureStrategy.STOP),
            SendNotificationAction(id='notify', recipients=('assignee', 'supervisor'), template='escalated'),
        ])
        self.engine.add_rule(rule)

        stored = self.repository.get('stored')

        self.assertEqual(stored.conditions[0].field, 'task.priority')
        self.assertIsInstance(stored.actions[0], EscalateTaskAction)
        self.assertEqual(stored.actions[0].deadline_extension_hours, 12)
        self.assertEqual(stored.actions[0].failure_strategy, FailureStrategy.STOP)
        self.assertEqual(stored.actions[1].recipients, ('assignee', 'supervisor'))

    def test_outcomes_increment_counters_in_the_database(self):
        self.engine.add_rule(BusinessRuleFactory(id='counted'))

        self.engine.evaluate_rules(WorkflowContextFactory())
        self.engine.evaluate_rules(WorkflowContextFactory())

        record = BusinessRuleRecord.objects.get(rule_id='counted')
        self.assertEqual(record.trigger_count, 2)
        self.assertEqual(record.success_count, 2)
        self.assertEqual(record.last_triggered, NOW)

    def test_active_rules_only(self):
        self.engine.add_rule(BusinessRuleFactory(id='on', priority=2))
        self.engine.add_rule(BusinessRuleFactory(id='off', priority=1, is_active=False))

        self.assertEqual([rule.id for rule in self.repository.list(active_only=True)], ['on'])
        self.assertEqual(self.repository.reset_stats(), 2)
        self.assertTrue(self.repository.delete('off'))
        with self.assertRaises(NotFound):
            self.repository.get('off')
