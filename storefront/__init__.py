"""Backend checkout & synchronisation catalogue (FastAPI, Supabase, Stripe)."""
