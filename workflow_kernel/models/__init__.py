"""ORM models for workflow templates, instances and notification logs."""

from workflow_kernel.models.instance import WorkflowInstanceModel, WorkflowInstanceStepModel
from workflow_kernel.models.notification import WorkflowNotificationLogModel
from workflow_kernel.models.template import WorkflowTemplateModel, WorkflowTemplateStepModel

__all__ = [
    "WorkflowInstanceModel",
    "WorkflowInstanceStepModel",
    "WorkflowNotificationLogModel",
    "WorkflowTemplateModel",
    "WorkflowTemplateStepModel",
]
