"""
Base Celery task class with logging and Sentry integration.
"""
import logging

from celery import Task

from apps.core.sentry_utils import add_breadcrumb, capture_exception, start_transaction

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class for maintenance jobs.

    Logs start, completion, failure, and retries, and reports failures
    to Sentry with the task context.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        transaction = start_transaction(name=f"task.{task_name}", op="celery.task")

        try:
            logger.info(
                f"Task started: {task_name}",
                extra={'task_id': task_id, 'task_name': task_name}
            )
            add_breadcrumb(
                category="task",
                message=f"Task started: {task_name}",
                data={'task_id': task_id},
            )

            result = super().__call__(*args, **kwargs)

            logger.info(
                f"Task completed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'result': self._summarize_result(result),
                }
            )

            if transaction:
                transaction.set_status("ok")
                transaction.finish()

            return result

        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            capture_exception(exc, task={'task_id': task_id, 'task_name': task_name})

            if transaction:
                transaction.set_status("internal_error")
                transaction.finish()

            raise

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'exception': str(exc),
            }
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _summarize_result(self, result):
        """Truncate task result for logging."""
        if result is None:
            return None

        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'
        return result_str
