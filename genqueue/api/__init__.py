from genqueue.api.routes import router

__all__ = ["router"]
