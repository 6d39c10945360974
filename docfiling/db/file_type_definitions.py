"""Database access for user-defined file type definitions.

Rows from ``file_type_definitions`` feed the reference library alongside
the bundled system references.
"""

from typing import Any, Dict, List

from supabase import Client

from docfiling.db.supabase_client import execute_query

TABLE = "file_type_definitions"


async def fetch_user_file_type_definitions(client: Client) -> List[Dict[str, Any]]:
    """Fetch active user file type definitions.

    Args:
        client: Supabase client instance

    Returns:
        List[Dict]: Raw definition rows, possibly empty

    Raises:
        RuntimeError: If the query fails after retries
    """
    def _query():
        return (
            client.table(TABLE)
            .select("*")
            .eq("is_active", True)
            .execute()
        )

    try:
        response = await execute_query(_query)
    except Exception as e:
        raise RuntimeError(f"Failed to fetch file type definitions: {str(e)}") from e
    return response.data or []
