# checklist_generator.py — LLM-backed onboarding checklist generation
# Calls an OpenAI-compatible chat completions endpoint; any failure (no key,
# network error, unparsable answer) falls back to a static checklist.
import os
import json
import logging
import secrets
import string
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFound, ValidationFailed
from models import SharedChecklist, as_utc
from telemetry import onboarding_span

logger = logging.getLogger("hr-onboarding.checklists")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_ENDPOINT = os.getenv("OPENAI_API_ENDPOINT", "https://api.openai.com/v1").rstrip("/")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

STEP_KEY = "étape"
SLUG_LENGTH = 10
SLUG_ALPHABET = string.ascii_lowercase + string.digits

SYSTEM_PROMPT = """Vous êtes un assistant RH spécialisé dans l'intégration des employés en France.
Générez une liste de contrôle d'intégration concise en français (forme formelle 'vous').
Exigences:
- Format: tableau JSON d'objets avec clé "étape"
- Longueur: 5-7 éléments
- Inclure les étapes RH/légales françaises (DPAE, sécurité, médecine du travail, RGPD)
- Adapter au rôle et au département
- Rôles techniques → configuration IT/sécurité
- RH/Finance → conformité et confidentialité
- Commercial/Marketing → CRM, RGPD, communication client

Répondez UNIQUEMENT avec ce format exact:
[{"étape": "première tâche"}, {"étape": "deuxième tâche"}, {"étape": "troisième tâche"}]"""


def fallback_checklist(role: str, department: str) -> List[Dict[str, str]]:
    return [
        {STEP_KEY: "Compléter la Déclaration Préalable à l'Embauche (DPAE)"},
        {STEP_KEY: "Créer un compte utilisateur et configurer les accès"},
        {STEP_KEY: "Planifier la visite médicale obligatoire"},
        {STEP_KEY: "Présentation des procédures RGPD et sécurité"},
        {STEP_KEY: "Réunion d'accueil avec l'équipe"},
        {STEP_KEY: f"Formation spécifique au rôle: {role}"},
        {STEP_KEY: f"Intégration équipe {department}"},
    ]


def _parse_checklist(content: str) -> List[Dict[str, str]]:
    """Parse the model answer; raise ValueError unless it is a list of steps."""
    steps = json.loads(content.strip())
    if not isinstance(steps, list) or not steps:
        raise ValueError("expected a non-empty JSON array")
    if not all(isinstance(s, dict) and isinstance(s.get(STEP_KEY), str) for s in steps):
        raise ValueError(f"every entry needs a string '{STEP_KEY}'")
    return steps


class ChecklistGenerator:
    """Generate checklists and persist shareable copies."""

    def __init__(self, db: Optional[AsyncSession] = None):
        self.db = db

    async def _call_llm(self, role: str, department: str) -> Optional[List[Dict[str, str]]]:
        if not OPENAI_API_KEY:
            return None
        payload = {
            "model": OPENAI_MODEL,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Rôle: {role}, Département: {department}"},
            ],
            "max_tokens": 1000,
            "temperature": 0.7,
        }
        try:
            with onboarding_span("checklist.llm", model=OPENAI_MODEL, role=role, department=department):
                async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS) as client:
                    resp = await client.post(
                        f"{OPENAI_API_ENDPOINT}/chat/completions",
                        headers={"Authorization": f"Bearer {OPENAI_API_KEY}", "Content-Type": "application/json"},
                        json=payload,
                    )
                    resp.raise_for_status()
                    data = resp.json()
            return _parse_checklist(data["choices"][0]["message"]["content"])
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"LLM checklist generation failed ({OPENAI_MODEL}), using fallback: {e}")
            return None

    async def generate(self, role: str, department: str) -> Dict[str, Any]:
        role, department = role.strip(), department.strip()
        if not role or not department:
            raise ValidationFailed("role and department are required")

        checklist = await self._call_llm(role, department)
        source = "llm"
        if checklist is None:
            checklist = fallback_checklist(role, department)
            source = "fallback"
        return {"checklist": checklist, "role": role, "department": department, "source": source}

    async def share(self, checklist: List[Dict[str, Any]], role: str, department: str) -> Dict[str, str]:
        if not checklist:
            raise ValidationFailed("Valid checklist array is required")

        slug = "".join(secrets.choice(SLUG_ALPHABET) for _ in range(SLUG_LENGTH))
        self.db.add(SharedChecklist(slug=slug, checklist=checklist, role=role, department=department))
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Checklist shared as {slug}")
        return {"slug": slug, "share_url": f"/c/{slug}"}

    async def get_shared(self, slug: str) -> Dict[str, Any]:
        if not slug or not all(c.isascii() and (c.isalnum() or c == "-") for c in slug):
            raise ValidationFailed("Invalid checklist identifier")

        result = await self.db.execute(select(SharedChecklist).where(SharedChecklist.slug == slug))
        shared = result.scalar_one_or_none()
        if not shared:
            raise NotFound("Checklist not found")
        return {
            "slug": shared.slug,
            "checklist": shared.checklist,
            "role": shared.role,
            "department": shared.department,
            "created_at": as_utc(shared.created_at).isoformat() if shared.created_at else None,
        }
