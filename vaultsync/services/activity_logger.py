"""Best-effort activity log writes that accompany remote mutations"""

import logging
from typing import Any, Dict, Optional

from vaultsync.errors import BackendError
from vaultsync.monitoring.metrics import metrics_collector
from vaultsync.schemas.auth import AuthUser
from vaultsync.schemas.results import SideEffectResult
from vaultsync.services.backend_client import BackendClient
from vaultsync.services.tables import ACTIVITY_LOG

logger = logging.getLogger(__name__)


class ActivityLogger:
    """Writes one activity_log row per remote mutation; failures never propagate"""

    def __init__(self, backend: BackendClient):
        self.backend = backend

    async def log(
        self,
        user: AuthUser,
        project_id: str,
        action_type: str,
        reference_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SideEffectResult:
        """
        Record an activity entry for the acting user.

        Returns:
            SideEffectResult; a failed insert is logged and reported, not raised
        """
        try:
            await self.backend.insert(
                ACTIVITY_LOG,
                {
                    "project_id": project_id,
                    "action_type": action_type,
                    "reference_id": reference_id,
                    "actor_user_id": user.id,
                    "actor_name_snapshot": user.actor_name,
                    "metadata": metadata,
                },
                returning=False,
            )
        except BackendError as e:
            logger.warning(f"Activity {action_type} for project {project_id} not recorded: {e}")
            metrics_collector.record_side_effect_failure("activity_log")
            return SideEffectResult.failure(e)
        return SideEffectResult.success()
