"""
Formosa CRM (PHRONENCIAL) - API Backend
Leads de crédito desde ManyChat (WhatsApp / Instagram / Messenger)

Arranca con:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

import config

# Configuración logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("formosa")

app = FastAPI(
    title="Formosa CRM",
    description="CRM de leads de créditos con integración ManyChat",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== RUTAS ====================

from routes import (
    auth,
    leads,
    pipeline,
    tags,
    conversations,
    messaging,
    documents,
    webhooks,
    manychat,
    dashboard,
    settings,
    events,
)

app.include_router(auth.router, prefix="/api")
app.include_router(leads.router, prefix="/api")
app.include_router(pipeline.router, prefix="/api")
app.include_router(tags.router, prefix="/api")
app.include_router(conversations.router, prefix="/api")
app.include_router(messaging.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")
app.include_router(manychat.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(events.router, prefix="/api")


# ==================== RUTA RAÍZ ====================

@app.get("/")
async def root():
    return {
        "name": "Formosa CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": config.now_iso()}


# ==================== STARTUP / SHUTDOWN ====================

scheduler = None


async def create_indexes():
    db = config.db
    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.leads.create_index("id", unique=True)
    await db.leads.create_index("telefono")
    await db.leads.create_index("dni")
    await db.leads.create_index("manychatId")
    await db.leads.create_index("createdAt")
    await db.leads.create_index("tags")
    await db.lead_pipeline.create_index("lead_id", unique=True)
    await db.lead_pipeline.create_index("current_stage")
    await db.pipeline_history.create_index("lead_id")
    await db.pipeline_stage_tags.create_index("stage")
    await db.conversations.create_index([("platform", 1), ("platform_id", 1)])
    await db.conversations.create_index("lead_id")
    await db.messages.create_index("conversation_id")
    await db.messages.create_index("platform_msg_id")
    await db.documents.create_index("lead_id")
    await db.manychat_sync.create_index([("status", 1), ("next_retry_at", 1)])
    await db.manychat_sync.create_index("lead_id")
    await db.events.create_index("lead_id")
    await db.events.create_index("created_at")
    await db.settings.create_index("key", unique=True)


@app.on_event("startup")
async def startup():
    global scheduler
    logger.info("Formosa CRM iniciado")

    await create_indexes()
    logger.info("Índices MongoDB creados")

    from services.pipeline import seed_stage_tags
    await seed_stage_tags()

    config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

    if config.SCHEDULER_ENABLED:
        from scheduler_service import TaskScheduler
        scheduler = TaskScheduler()
        scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if scheduler:
        scheduler.stop()
    config.client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
