"""Derive the public media feed from project visibility"""

import logging
from typing import Dict, List, Optional

from vaultsync.config import settings
from vaultsync.errors import BackendError
from vaultsync.monitoring.metrics import metrics_collector
from vaultsync.schemas.common import clean_text, utc_now_iso
from vaultsync.schemas.project import VisibilityFeedSyncSummary
from vaultsync.schemas.results import SideEffectResult
from vaultsync.services.backend_client import BackendClient, chunked, eq, neq
from vaultsync.services import tables
from vaultsync.services.local_store import LocalStore

logger = logging.getLogger(__name__)

POSTS_TABLE = tables.PUBLIC_MEDIA_POSTS


class PostStatus:
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    REMOVED = "removed"


class VisibilityFanOut:
    """
    Keeps public_media_posts consistent with the visibility of a project.

    A removed post is terminal: fan-out never publishes or unpublishes it.
    Backend errors are logged and the counts gathered so far are returned.
    """

    def __init__(
        self,
        backend: BackendClient,
        local_store: LocalStore,
        insert_chunk_size: Optional[int] = None,
    ):
        self.backend = backend
        self.local_store = local_store
        self.insert_chunk_size = insert_chunk_size or settings.public_post_insert_chunk_size

    async def sync_project_visibility(
        self,
        auth_user_id: str,
        project_id: str,
        organization_id: Optional[str],
        visibility: str,
    ) -> VisibilityFeedSyncSummary:
        """
        Publish or unpublish every media post of a project.

        Args:
            auth_user_id: Actor recorded as publisher
            project_id: Backend project id
            organization_id: Organization copied onto the posts
            visibility: The project's new visibility

        Returns:
            VisibilityFeedSyncSummary with the counts actually applied
        """
        summary = VisibilityFeedSyncSummary(visibility=visibility)
        try:
            if visibility == "private":
                await self._unpublish_all(project_id, summary)
            else:
                await self._publish_all(auth_user_id, project_id, organization_id, summary)
        except BackendError as e:
            logger.warning(f"Public media visibility sync warning for project {project_id}: {e}")

        metrics_collector.record_feed_summary(summary)
        logger.info(
            f"Visibility fan-out for project {project_id} ({visibility}): "
            f"{summary.model_dump(exclude={'visibility'})}"
        )
        return summary

    async def _unpublish_all(self, project_id: str, summary: VisibilityFeedSyncSummary) -> None:
        live_filters = [
            eq("project_id", project_id),
            neq("status", PostStatus.REMOVED),
            neq("status", PostStatus.UNPUBLISHED),
        ]
        active_rows = await self.backend.select(POSTS_TABLE, "id", live_filters)
        summary.total_media = len(active_rows)
        if not active_rows:
            return

        await self.backend.update(
            POSTS_TABLE, {"status": PostStatus.UNPUBLISHED}, live_filters, returning=False
        )
        summary.unpublished = len(active_rows)

    async def _publish_all(
        self,
        auth_user_id: str,
        project_id: str,
        organization_id: Optional[str],
        summary: VisibilityFeedSyncSummary,
    ) -> None:
        media_rows = await self.backend.select(tables.MEDIA, "id, note", [eq("project_id", project_id)])
        summary.total_media = len(media_rows)
        if not media_rows:
            return

        post_rows = await self.backend.select(
            POSTS_TABLE, "id, media_id, caption, status", [eq("project_id", project_id)]
        )
        posts_by_media: Dict[str, dict] = {}
        for row in post_rows:
            media_id = row.get("media_id")
            if media_id and media_id not in posts_by_media:
                posts_by_media[media_id] = row

        now = utc_now_iso()
        to_insert: List[dict] = []
        to_update: List[dict] = []
        for media in media_rows:
            media_id = clean_text(media.get("id"))
            if not media_id:
                continue
            derived_caption = clean_text(media.get("note"))
            existing = posts_by_media.get(media_id)

            if existing is not None and existing.get("status") == PostStatus.REMOVED:
                summary.skipped_removed += 1
                continue

            if existing is not None and existing.get("id"):
                to_update.append(
                    {
                        "id": existing["id"],
                        "caption": clean_text(existing.get("caption")) or derived_caption,
                        "was_published": existing.get("status") == PostStatus.PUBLISHED,
                    }
                )
                continue

            to_insert.append(
                {
                    "project_id": project_id,
                    "media_id": media_id,
                    "organization_id": organization_id,
                    "caption": derived_caption,
                    "published_by_user_id": auth_user_id,
                    "status": PostStatus.PUBLISHED,
                    "published_at": now,
                }
            )

        for row in to_update:
            try:
                await self.backend.update(
                    POSTS_TABLE,
                    {
                        "organization_id": organization_id,
                        "caption": row["caption"],
                        "published_by_user_id": auth_user_id,
                        "status": PostStatus.PUBLISHED,
                        "published_at": now,
                    },
                    [eq("id", row["id"])],
                    returning=False,
                )
            except BackendError as e:
                logger.warning(f"Public media visibility sync warning (update {row['id']}): {e}")
                continue
            if row["was_published"]:
                summary.updated_published += 1
            else:
                summary.republished += 1

        for chunk in chunked(to_insert, self.insert_chunk_size):
            try:
                await self.backend.insert(POSTS_TABLE, list(chunk), returning=False)
            except BackendError as e:
                logger.warning(f"Public media visibility sync warning (insert): {e}")
                continue
            summary.inserted += len(chunk)

    async def publish_media_if_project_public(
        self,
        auth_user_id: str,
        project_id: str,
        media_id: str,
        caption: Optional[str] = None,
    ) -> SideEffectResult:
        """
        Put a newly added media item on the feed when its project is public.

        The project counts as public when either the backend row or the local
        row says so. An existing removed post is left alone.
        """
        try:
            project_row = await self.backend.select_one(
                tables.PROJECTS, "id, organization_id, visibility", [eq("id", project_id)]
            )
            local_project = self.local_store.get_project(project_id)
            remote_is_public = bool(project_row and project_row.get("visibility") == "public")
            local_is_public = bool(local_project and local_project.visibility == "public")
            if not remote_is_public and not local_is_public:
                return SideEffectResult.success()

            organization_id = (project_row or {}).get("organization_id")
            if organization_id is None and local_project is not None:
                organization_id = local_project.organization_id

            values = {
                "organization_id": organization_id,
                "caption": clean_text(caption),
                "published_by_user_id": auth_user_id,
                "status": PostStatus.PUBLISHED,
                "published_at": utc_now_iso(),
            }

            existing = await self.backend.select_one(POSTS_TABLE, "id, status", [eq("media_id", media_id)])
            if existing is not None and existing.get("id"):
                if existing.get("status") == PostStatus.REMOVED:
                    return SideEffectResult.success()
                await self.backend.update(POSTS_TABLE, values, [eq("id", existing["id"])], returning=False)
                return SideEffectResult.success()

            await self.backend.insert(
                POSTS_TABLE, {"project_id": project_id, "media_id": media_id, **values}, returning=False
            )
        except BackendError as e:
            logger.warning(f"Public media auto-publish warning for media {media_id}: {e}")
            metrics_collector.record_side_effect_failure("auto_publish")
            return SideEffectResult.failure(e)
        return SideEffectResult.success()
