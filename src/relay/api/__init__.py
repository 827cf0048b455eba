"""FastAPI REST API for Relay.

Administrative endpoints for managing webhooks, browsing delivery
history and triggering test events.

Example:
    ```python
    import uvicorn
    from relay.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn relay.api:app --reload
    ```
"""

from .app import app, create_app, register_exception_handlers
from .router import router

__all__ = [
    "app",
    "create_app",
    "register_exception_handlers",
    "router",
]
