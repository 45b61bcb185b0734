"""
Database client configuration.
Uses Supabase (PostgreSQL) by default; the SQLite backend in
app.services.binding_store does not need this client.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

# Service-level client (bypasses RLS). None when Supabase is not configured,
# e.g. when STORE_BACKEND=sqlite.
supabase_admin: Client = (
    create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    if SUPABASE_URL and SUPABASE_SERVICE_KEY
    else None
)
