"""
Scheduler de tareas automáticas Formosa CRM
- Cola de sincronización ManyChat cada 5 minutos
- Limpieza de sesiones vencidas todos los días a las 3h
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

import config
from config import db, now_iso

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gestor de tareas programadas"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=config.TIMEZONE)

    def start(self):
        """Arranca el scheduler con todas las tareas"""
        self.scheduler.add_job(
            self.process_manychat_queue,
            CronTrigger(minute="*/5"),
            id="manychat_sync_queue",
            name="Cola de sync ManyChat",
            replace_existing=True
        )

        self.scheduler.add_job(
            self.purge_expired_sessions,
            CronTrigger(hour=3, minute=0),
            id="purge_sessions",
            name="Limpieza de sesiones vencidas",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler iniciado")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler detenido")

    # ==================== TAREAS ====================

    async def process_manychat_queue(self):
        """Reintenta los syncs to_manychat pendientes"""
        from services.manychat_sync import process_pending_syncs

        try:
            results = await process_pending_syncs()
            if results["processed"]:
                logger.info(f"Cola ManyChat: {results}")
            return results
        except Exception as e:
            logger.error(f"Error procesando cola ManyChat: {e}")
            return None

    async def purge_expired_sessions(self):
        try:
            result = await db.sessions.delete_many({"expires_at": {"$lte": now_iso()}})
            logger.info(f"Sesiones vencidas eliminadas: {result.deleted_count}")
            return result.deleted_count
        except Exception as e:
            logger.error(f"Error limpiando sesiones: {e}")
            return 0
