from app.core.clock import utc_now


async def health_check():
    """Liveness probe; does not touch the database."""
    return {"status": "ok", "timestamp": utc_now().isoformat()}
