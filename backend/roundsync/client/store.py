"""HTTP access to the durable store used by the screens."""
import logging
from typing import List, Optional

import requests

from roundsync.errors import SyncError, error_from_response
from .changes import ItemSnapshot, RoundSnapshot, SequenceEntrySnapshot

logger = logging.getLogger(__name__)


class HttpStore:
    def __init__(self, base_url: str = '', session=None, timeout: float = 5):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, json=None, params=None):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=json, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise SyncError(f"Store unreachable: {exc}")

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.status_code >= 400:
            raise error_from_response(payload, response.status_code)
        return payload

    # ---- rounds ----

    def current_round(self) -> Optional[RoundSnapshot]:
        payload = self._request('GET', '/api/rounds/current')
        return RoundSnapshot.from_dict(payload.get('round'))

    def get_round(self, round_id: int) -> RoundSnapshot:
        return RoundSnapshot.from_dict(self._request('GET', f'/api/rounds/{round_id}'))

    def list_rounds(self, status: Optional[str] = None) -> List[RoundSnapshot]:
        params = {'status': status} if status else None
        return [RoundSnapshot.from_dict(r) for r in self._request('GET', '/api/rounds', params=params)]

    def next_round_number(self) -> int:
        return self._request('GET', '/api/rounds/next-number')['number']

    def create_round(self, number=None, time_limit_seconds=None, planned_items=None,
                     item_quota=None) -> RoundSnapshot:
        body = {
            'number': number,
            'time_limit_seconds': time_limit_seconds,
            'planned_items': planned_items,
            'item_quota': item_quota,
        }
        body = {k: v for k, v in body.items() if v is not None}
        return RoundSnapshot.from_dict(self._request('POST', '/api/rounds', json=body))

    def start_round(self, round_id: int) -> RoundSnapshot:
        return RoundSnapshot.from_dict(self._request('POST', f'/api/rounds/{round_id}/start', json={}))

    def pause_round(self, round_id: int) -> RoundSnapshot:
        return RoundSnapshot.from_dict(self._request('POST', f'/api/rounds/{round_id}/pause', json={}))

    def finish_round(self, round_id: int) -> RoundSnapshot:
        return RoundSnapshot.from_dict(self._request('POST', f'/api/rounds/{round_id}/finish', json={}))

    def extend_round(self, round_id: int, delta_minutes: int) -> RoundSnapshot:
        payload = self._request('POST', f'/api/rounds/{round_id}/extend',
                                json={'delta_minutes': delta_minutes})
        return RoundSnapshot.from_dict(payload)

    def sequence(self, round_id: int) -> List[SequenceEntrySnapshot]:
        return [SequenceEntrySnapshot.from_dict(e)
                for e in self._request('GET', f'/api/rounds/{round_id}/sequence')]

    def cursor(self, round_id: int) -> dict:
        return self._request('GET', f'/api/rounds/{round_id}/cursor')

    def auto_reject(self, round_id: int) -> dict:
        """Returns ``rejected`` (count for this call) and ``open`` (grace window still running)."""
        return self._request('POST', f'/api/rounds/{round_id}/auto-reject', json={})

    def settings(self) -> dict:
        return self._request('GET', '/api/rounds/settings')

    def summary(self, round_id: int) -> dict:
        return self._request('GET', f'/api/rounds/{round_id}/summary')

    def reset(self) -> int:
        return self._request('POST', '/api/rounds/reset', json={})['deleted_rounds']

    # ---- items ----

    def pending_items(self, round_id: Optional[int] = None) -> List[ItemSnapshot]:
        params = {'round_id': round_id} if round_id is not None else None
        return [ItemSnapshot.from_dict(i) for i in self._request('GET', '/api/items/pending', params=params)]

    def team_items(self, team_id: int, round_id: Optional[int] = None) -> List[ItemSnapshot]:
        params = {'team_id': team_id}
        if round_id is not None:
            params['round_id'] = round_id
        return [ItemSnapshot.from_dict(i) for i in self._request('GET', '/api/items', params=params)]

    def get_item(self, item_id: int) -> ItemSnapshot:
        return ItemSnapshot.from_dict(self._request('GET', f'/api/items/{item_id}'))

    def submit_item(self, team_id: int, round_id: int, flavor_id: Optional[int] = None) -> ItemSnapshot:
        body = {'team_id': team_id, 'round_id': round_id}
        if flavor_id is not None:
            body['flavor_id'] = flavor_id
        return ItemSnapshot.from_dict(self._request('POST', '/api/items', json=body))

    def evaluate_item(self, item_id: int, verdict: str, reason: Optional[str] = None,
                      evaluator: Optional[str] = None) -> ItemSnapshot:
        body = {'verdict': verdict, 'reason': reason, 'evaluator': evaluator}
        return ItemSnapshot.from_dict(self._request('POST', f'/api/items/{item_id}/evaluate', json=body))
