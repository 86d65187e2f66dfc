"""
Task template engine.

Generates the tasks a case needs when it enters a phase, from templates
keyed on (case type, phase).
"""

import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from apps.cases.choices import CasePhase, CaseType
from apps.common.conf import get_setting
from apps.common.ports import Clock, SystemClock
from apps.common.utils import interpolate_template, truncate_history
from apps.tasks.choices import TaskStatus

from .defaults import get_default_templates
from .entities import CreatedTask, TaskTemplate, WorkflowContext, WorkflowResult

logger = logging.getLogger(__name__)

TASKS_CREATED_TEMPLATE = 'tasks_created'


def tasks_created_notice(context: WorkflowContext, count: int) -> Dict[str, Any]:
    """Summary notification telling the initiating user how many tasks a phase produced."""
    return {
        'channel': 'in_app',
        'recipients': [context.user_id] if context.user_id else [],
        'template': TASKS_CREATED_TEMPLATE,
        'urgency': 'medium',
        'subject': f"New Tasks Created for {context.case_id}",
        'message': f"{count} new tasks have been created for case phase {context.phase}",
        'case_id': context.case_id,
    }


class WorkflowEngine:
    """Registry of task templates and the generator driven by it."""

    def __init__(self, clock: Optional[Clock] = None, load_defaults: bool = True):
        self.clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._templates: Dict[str, TaskTemplate] = {}
        self._history: Dict[str, List[Dict[str, Any]]] = {}

        if load_defaults:
            for template in get_default_templates():
                self.add_template(template)
            logger.info(f"Initialized workflow engine with {len(self._templates)} templates")

    # ------------------------------------------------------------------
    # Template registry
    # ------------------------------------------------------------------

    def add_template(self, template: TaskTemplate) -> TaskTemplate:
        """Register a template, replacing any template with the same id."""
        with self._lock:
            replaced = template.id in self._templates
            self._templates[template.id] = template
        logger.debug(f"{'Replaced' if replaced else 'Registered'} task template '{template.id}'")
        return template

    def remove_template(self, template_id: str) -> bool:
        with self._lock:
            removed = self._templates.pop(template_id, None) is not None
        if not removed:
            logger.warning(f"Template '{template_id}' not found for removal")
        return removed

    def get_template(self, template_id: str) -> Optional[TaskTemplate]:
        return self._templates.get(template_id)

    def get_templates(
        self,
        case_type: Optional[CaseType] = None,
        phase: Optional[CasePhase] = None,
    ) -> List[TaskTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        if case_type is not None:
            templates = [template for template in templates if template.case_type == case_type]
        if phase is not None:
            templates = [template for template in templates if template.phase == phase]
        return templates

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_tasks(self, context: WorkflowContext) -> List[CreatedTask]:
        """
        Create tasks from every auto-create template matching the context's
        case type and phase whose conditions hold.

        Titles and descriptions interpolate ``{path}`` tokens from the
        context metadata; unknown tokens stay as written. The task is
        provisionally assigned to the user who caused the transition.

        Args:
            context: Context carrying case type, phase and metadata

        Returns:
            The generated, not yet scheduled, tasks
        """
        if context.case_type is None or context.phase is None:
            return []

        now = context.timestamp or self.clock.now()
        data = context.template_data()
        tasks = []

        for template in self.get_templates(case_type=context.case_type, phase=context.phase):
            if not template.auto_create:
                continue
            if not all(condition.evaluate(context.metadata, context) for condition in template.conditions):
                logger.debug(f"Template '{template.id}' skipped: conditions not met")
                continue

            due_date = None
            if template.due_date_offset_days is not None:
                due_date = now + timedelta(days=template.due_date_offset_days)

            tasks.append(CreatedTask(
                id=f"task_{uuid.uuid4().hex[:12]}",
                title=interpolate_template(template.title_template, data),
                description=interpolate_template(template.description_template or template.description, data),
                case_id=context.case_id,
                assigned_to=context.user_id,
                assigned_by=context.user_id,
                priority=template.default_priority,
                status=TaskStatus.PENDING,
                due_date=due_date,
                metadata={
                    'template_id': template.id,
                    'template_name': template.name,
                    'phase': str(template.phase),
                    'auto_generated': True,
                    'default_assignee_role': (
                        str(template.default_assignee_role) if template.default_assignee_role else None
                    ),
                    'required_fields': list(template.required_fields),
                },
            ))

        return tasks

    def process_phase_transition(self, context: WorkflowContext) -> WorkflowResult:
        """
        Generate the tasks of the phase a case just entered.

        A summary notification addressed to the initiating user is added
        when at least one task was generated. The outcome is appended to
        the case's workflow history.
        """
        result = WorkflowResult()
        try:
            result.created_tasks = self.generate_tasks(context)
        except Exception as e:
            logger.exception(f"Task generation failed for case {context.case_id}")
            result.success = False
            result.errors.append(f"Workflow processing failed: {e}")

        if result.created_tasks:
            count = len(result.created_tasks)
            result.notifications.append(tasks_created_notice(context, count))
            logger.info(f"Generated {count} task(s) for case {context.case_id} entering {context.phase}")

        if context.case_id:
            self._record(context, result)
        return result

    def _record(self, context: WorkflowContext, result: WorkflowResult) -> None:
        entry = {
            'timestamp': context.timestamp or self.clock.now(),
            'phase': str(context.phase) if context.phase else None,
            'previous_phase': str(context.previous_phase) if context.previous_phase else None,
            'user_id': context.user_id,
            'task_ids': [task.id for task in result.created_tasks],
            'success': result.success,
            'errors': list(result.errors),
        }
        with self._lock:
            history = self._history.setdefault(context.case_id, [])
            history.append(entry)
            truncate_history(history, get_setting('WORKFLOW_HISTORY_LIMIT'))

    def get_workflow_history(self, case_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Workflow runs of a case, oldest first."""
        with self._lock:
            history = list(self._history.get(case_id, []))
        return history[-limit:] if limit else history


# Global workflow engine instance
workflow_engine = WorkflowEngine()
