"""
chat_service.py — Chat turn orchestration on top of the delivery client.

Flow for one user turn:

    1. Trim the text; reject empty text or a missing session id
    2. Build the user ChatMessage
    3. Deliver to the webhook (always yields text, never raises)
    4. Build the assistant ChatMessage:
         • reply carries <startup cards> → short reference notice,
           flagged is_startup_list, cards decoded and attached to the turn
         • otherwise → the reply text, flagged is_html when it is markup

The service keeps no transcript. Persisting messages, challenges and
plan counters belongs to the document store behind the front end.
"""

from __future__ import annotations

import logging
import random
import secrets
import string
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from backend.app.chat.models import ChatMessage, DeliveryResult, MessageRole
from backend.app.chat.replies import (
    extract_startup_cards,
    has_startup_cards,
    is_html_reply,
)
from backend.app.chat.webhook_client import DeliveryClient
from backend.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

SESSION_ID_LENGTH = 12
_SESSION_ALPHABET = string.digits + string.ascii_lowercase

STARTUP_LIST_NOTICE = "Lista de startups gerada com sucesso! Clique para visualizar."

WELCOME_MESSAGES = (
    "Tudo bom? Eu sou a Genie, sua agente IA para encontrar as melhores startups para resolver seus desafios! Qual é seu nome e qual empresa você representa?",
    "Tudo beleza? Sou Genie, sua agente de inovação aberta turbinada com um conhecimento de mais de 77 mil startups globais. Qual é seu desafio?",
    "Prazer em conhecê-lo! Sou a Genie, sua agente de inteligência artificial para os desafios mais complexos de inovação aberta. Pode iniciar a descrição de seu problema ou desafio?",
    "Oi! Genie aqui, sua parceira em inovação! Pronta para mergulhar no universo de 77 mil startups e encontrar a solução perfeita para seu desafio. Vamos começar?",
    "E aí! Sou a Genie, sua matchmaker de inovação! 💡 Tenho um banco de dados incrível com milhares de startups esperando para revolucionar seu negócio. Qual desafio vamos resolver hoje?",
    "Olá! Genie na área! Pronta para ser sua GPS no mundo das startups - Garantindo Parcerias Sensacionais! 🚀 Como posso ajudar?",
    "Fala, inovador! Genie aqui, sua caçadora oficial de startups! Com mais de 77 mil opções na manga, estou pronta para encontrar aquela parceria que vai fazer a diferença. Vamos nessa?",
    "Opa! Bem-vindo ao futuro da inovação! Sou a Genie, sua consultora virtual especialista em conexões com startups. Qual desafio você quer transformar em oportunidade hoje?",
    "Hey! Genie presente! 🌟 Imagine ter acesso a um universo de 77 mil startups... Pois é, você tem! Sou sua guia nessa jornada de inovação. Por onde começamos?",
    "Salve! Aqui é a Genie, sua parceira de inovação aberta! Pronta para vasculhar o ecossistema global de startups e encontrar aquela solução que você tanto procura. Qual o desafio da vez?",
    "Hello! Genie na linha! 🎯 Especialista em transformar desafios em oportunidades através das melhores startups do mercado. Vamos inovar juntos?",
    "Oi! Que bom ter você aqui! Sou a Genie, sua especialista em inovação aberta. Com acesso a mais de 77 mil startups, estou pronta para encontrar a solução perfeita para seu desafio! 🚀",
    "Olá! Genie falando! Pronta para uma jornada de inovação? Com minha base de dados de startups globais, vamos encontrar parceiros incríveis para seu negócio! 💫",
    "E aí! Genie na área, sua navegadora no oceano da inovação! 🌊 Com milhares de startups mapeadas, vamos encontrar seu match perfeito!",
    "Oi! Sou a Genie, sua consultora de inovação digital! 🤖 Pronta para conectar seu desafio com as startups mais promissoras do mercado!",
    "Fala, parceiro! Genie aqui, sua bússola no universo das startups! 🧭 Vamos explorar juntos as melhores soluções para sua empresa?",
    "Hey! Genie presente, sua curadora de inovação! ✨ Com acesso a um banco de dados global de startups, estou aqui para transformar seus desafios em oportunidades!",
    "Olá! Aqui é a Genie, sua mentora de inovação aberta! 🎓 Pronta para compartilhar conhecimento e conectar você com as startups mais inovadoras!",
    "Oi! Genie falando, sua parceira estratégica em inovação! 🎯 Vamos descobrir juntos as startups que vão revolucionar seu negócio?",
    "E aí! Genie na linha, sua facilitadora de inovação! 🌟 Com milhares de startups mapeadas, estou pronta para encontrar a solução ideal para seu desafio!",
    "Olá! Sou a Genie, sua guia no ecossistema de startups! 🌍 Vamos explorar as possibilidades infinitas da inovação aberta?",
    "Hey! Genie aqui, sua expert em conexões inovadoras! 🔗 Pronta para unir seu desafio com as startups mais disruptivas do mercado!",
    "Fala! Genie presente, sua aliada em transformação digital! 💻 Vamos encontrar as startups que vão impulsionar sua empresa para o futuro?",
)


def generate_session_id() -> str:
    """Opaque 12-char base-36 key for a new conversation thread."""
    return "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def welcome_message(rng: Optional[random.Random] = None) -> ChatMessage:
    """Assistant greeting that opens a new conversation thread."""
    chooser = rng or random
    return ChatMessage(role=MessageRole.ASSISTANT, content=chooser.choice(WELCOME_MESSAGES))


@dataclass
class ChatTurn:
    """Result of one user turn: both transcript entries plus delivery detail."""
    user_message: ChatMessage
    assistant_message: ChatMessage
    delivery: DeliveryResult
    startup_cards: Optional[Dict[str, Any]] = None

    @property
    def reply(self) -> str:
        return self.delivery.text


class ChatService:
    """Turns raw user input into a delivered chat turn."""

    def __init__(self, delivery_client: DeliveryClient):
        self.delivery_client = delivery_client

    def new_session(self) -> Tuple[str, ChatMessage]:
        session_id = generate_session_id()
        logger.info("Opened conversation thread", extra={"session_id": session_id})
        return session_id, welcome_message()

    async def send_message(self, content: str, session_id: str) -> ChatTurn:
        """
        Deliver one user message and build the resulting transcript entries.

        Raises
        ------
        ValidationError
            If the trimmed content or the session id is empty.
        """
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message must not be empty", field="message")
        if not session_id or not session_id.strip():
            raise ValidationError("Session id must not be empty", field="session_id")

        user_message = ChatMessage(role=MessageRole.USER, content=text)
        delivery = await self.delivery_client.deliver_result(text, session_id)
        reply = delivery.text

        startup_cards = None
        if delivery.is_reply and has_startup_cards(reply):
            startup_cards = extract_startup_cards(reply)
            assistant_message = ChatMessage(
                role=MessageRole.ASSISTANT,
                content=STARTUP_LIST_NOTICE,
                is_startup_list=True,
            )
            logger.info(
                "Startup list received (%s)",
                "decoded" if startup_cards is not None else "undecodable",
                extra={"session_id": session_id},
            )
        else:
            assistant_message = ChatMessage(
                role=MessageRole.ASSISTANT,
                content=reply,
                is_html=is_html_reply(reply),
            )

        return ChatTurn(
            user_message=user_message,
            assistant_message=assistant_message,
            delivery=delivery,
            startup_cards=startup_cards,
        )
