"""Backends the client workflow can drive.

Both expose ``async call(action, input, qa_pairs=None, api_key=None)``
and return the proxy's success body (``{"result": ...}`` or
``{"questions": [...]}``), raising a ``ClarityError`` on failure.

``ProxyBackend`` talks to the deployed proxy over HTTP.
``DirectBackend`` runs the router in-process against a transport, for
setups where the client holds the key and calls the upstream directly.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional
import asyncio
import logging

import requests

from clarity.models import router
from clarity.models.prompts import DEFAULT_LANGUAGE
from clarity.models.schemas import ActionRequest, QAPair
from clarity.utils.errors import InvalidAction, MalformedUpstreamJSON, NetworkFailure, UpstreamTimeout, from_payload

logger = logging.getLogger(__name__)


class ProxyBackend:
    def __init__(self, endpoint: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamTimeout() from exc
        except requests.RequestException as exc:
            raise NetworkFailure() from exc
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code != 200:
            err = from_payload(resp.status_code, body)
            logger.warning("Proxy returned %s: %s", resp.status_code, err.code)
            raise err
        if not isinstance(body, dict):
            raise MalformedUpstreamJSON()
        return body

    async def call(
        self,
        action: str,
        input: str,
        qa_pairs: Optional[List[QAPair]] = None,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": action, "input": input}
        if qa_pairs:
            payload["qaPairs"] = [qa.model_dump() for qa in qa_pairs]
        if api_key:
            payload["apiKey"] = api_key
        return await asyncio.to_thread(self._post, payload)


class DirectBackend:
    def __init__(self, transport: router.Transport, language: str = DEFAULT_LANGUAGE):
        self.transport = transport
        self.language = language

    async def call(
        self,
        action: str,
        input: str,
        qa_pairs: Optional[List[QAPair]] = None,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        if action not in router.ACTIONS:
            raise InvalidAction()
        req = ActionRequest(action=action, input=input, qaPairs=list(qa_pairs or []), apiKey=api_key)
        return await asyncio.to_thread(router.dispatch, req, self.transport, api_key, self.language)
