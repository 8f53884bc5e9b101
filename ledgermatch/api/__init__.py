from ledgermatch.api.engine import router as engine_router

__all__ = ["engine_router"]
