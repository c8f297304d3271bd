"""Backend table names and the column sets read from them"""

PROJECTS = "projects"
FOLDERS = "folders"
MEDIA = "media"
NOTES = "notes"
PROJECT_MEMBERS = "project_members"
ORGANIZATION_MEMBERS = "organization_members"
PUBLIC_PROFILES = "project_public_profiles"
ACTIVITY_LOG = "activity_log"
PUBLIC_MEDIA_POSTS = "public_media_posts"

PROJECT_COLUMNS = (
    "id, owner_user_id, organization_id, name, client, location, status, status_override, "
    "visibility, public_slug, public_published_at, public_updated_at, progress, start_date, "
    "end_date, budget, created_at, updated_at"
)
ACTIVITY_COLUMNS = (
    "id, project_id, action_type, reference_id, actor_user_id, actor_name_snapshot, metadata, created_at"
)
FOLDER_COLUMNS = "id, project_id, name, created_at"
MEDIA_COLUMNS = (
    "id, project_id, folder_id, uploaded_by_user_id, type, uri, thumb_uri, note, metadata, created_at"
)
NOTE_COLUMNS = "id, project_id, media_id, author_user_id, title, content, created_at, updated_at"
PROJECT_MEMBER_COLUMNS = (
    "id, project_id, user_id, invited_email, role, status, invited_by, user_name_snapshot, "
    "user_email_snapshot, created_at, updated_at, accepted_at"
)
PUBLIC_PROFILE_COLUMNS = (
    "project_id, public_title, summary, city, region, category, hero_media_id, hero_comment, "
    "contact_email, contact_phone, website_url, highlights_json, created_at, updated_at"
)
