"""Supabase (PostgREST) helpers.

Every public function is an async call returning plain Python objects, so
they can be handed to the global cache as fetchers.
"""

from mnno_school.supabase_api._client import (  # noqa: F401
    SupabaseError,
    call_rpc,
    select_rows,
    update_rows,
)
from mnno_school.supabase_api.queries import (  # noqa: F401
    get_video_row,
    list_notifications,
    list_team_members,
    list_user_companies,
    mark_notifications_read,
)
