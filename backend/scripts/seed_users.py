"""
Formosa CRM - Seed de usuarios (dev/staging)
Crea un admin y un usuario por rol con contraseña conocida.
Run: cd backend && python3 scripts/seed_users.py
Reset: python3 scripts/seed_users.py --reset
"""

import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import db, client, hash_password, now_iso
from services.permissions import get_preset_permissions

TEST_PASSWORD = "Formosa2025!"

TEST_USERS = [
    {"email": "admin@formosa.local",    "nombre": "Administrador",  "role": "ADMIN"},
    {"email": "manager@formosa.local",  "nombre": "Gerente",        "role": "MANAGER"},
    {"email": "analista@formosa.local", "nombre": "Analista",       "role": "ANALISTA"},
    {"email": "vendedor@formosa.local", "nombre": "Vendedor",       "role": "VENDEDOR"},
    {"email": "viewer@formosa.local",   "nombre": "Solo lectura",   "role": "VIEWER"},
]


async def reset():
    """Borra los usuarios @formosa.local y sus sesiones"""
    users = await db.users.find({"email": {"$regex": "@formosa\\.local$"}}, {"_id": 0, "id": 1}).to_list(50)
    await db.sessions.delete_many({"user_id": {"$in": [u["id"] for u in users]}})
    result = await db.users.delete_many({"email": {"$regex": "@formosa\\.local$"}})
    print(f"Usuarios eliminados: {result.deleted_count}")


async def seed():
    for u in TEST_USERS:
        doc = {
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "nombre": u["nombre"],
            "role": u["role"],
            "permissions": get_preset_permissions(u["role"]),
            "is_active": True,
        }
        if await db.users.find_one({"email": u["email"]}):
            await db.users.update_one({"email": u["email"]}, {"$set": doc})
            print(f"  Actualizado: {u['email']} ({u['role']})")
        else:
            doc["id"] = str(uuid.uuid4())
            doc["created_at"] = now_iso()
            await db.users.insert_one(doc)
            print(f"  Creado: {u['email']} ({u['role']})")


async def main():
    await reset()
    if "--reset" not in sys.argv:
        await seed()
        print(f"\n{len(TEST_USERS)} usuarios creados. Contraseña: {TEST_PASSWORD}")
    client.close()


if __name__ == "__main__":
    asyncio.run(main())
