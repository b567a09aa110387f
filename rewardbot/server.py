import logging

import anyio
from fastapi import FastAPI, HTTPException, Request

logger = logging.getLogger(__name__)


def create_app(dispatcher, secret: str) -> FastAPI:
    if not secret:
        raise RuntimeError("WEBHOOK_SECRET must be set")
    app = FastAPI(title="Reward Bot Webhook")

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/webhook/{path_secret}")
    async def telegram_webhook(path_secret: str, req: Request):
        if path_secret != secret:
            raise HTTPException(status_code=403, detail="Forbidden")
        try:
            update = await req.json()
        except ValueError:
            logger.info("Ignoring webhook call with a non-JSON body")
            return {"ok": True}
        try:
            # dispatcher does blocking HTTP calls, keep them off the event loop
            await anyio.to_thread.run_sync(dispatcher.handle_update, update)
        except Exception:
            # a 500 makes Telegram redeliver the update
            logger.exception("Update handling failed")
        return {"ok": True}

    return app
