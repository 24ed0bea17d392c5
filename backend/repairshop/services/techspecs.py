"""Thin TechSpecs v5 client (device catalog provider)."""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import requests

from repairshop.errors import ExternalServiceError

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    401: 'TechSpecs rejected the API credentials',
    403: 'TechSpecs API key lacks permissions',
    429: 'TechSpecs rate limit exceeded',
}


class TechSpecsClient:
    def __init__(self, api_id: Optional[str], api_key: Optional[str],
                 base_url: str = 'https://api.techspecs.io', timeout: float = 15):
        if not api_key:
            raise ExternalServiceError('TechSpecs API key not configured')
        self.api_id = api_id or ''
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'TechSpecsClient':
        return cls(config.get('TECHSPECS_API_ID'), config.get('TECHSPECS_API_KEY'),
                   config.get('TECHSPECS_BASE_URL', 'https://api.techspecs.io'), config.get('TECHSPECS_TIMEOUT', 15))

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            r = requests.get(
                f'{self.base_url}{path}',
                params=params,
                headers={'Accept': 'application/json', 'x-api-id': self.api_id, 'x-api-key': self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning('TechSpecs request %s failed: %s', path, e)
            raise ExternalServiceError(f'TechSpecs unreachable: {e}')
        if not r.ok:
            logger.warning('TechSpecs %s returned %s: %s', path, r.status_code, r.text[:200])
            raise ExternalServiceError(STATUS_MESSAGES.get(r.status_code, f'TechSpecs API error: {r.status_code}'),
                                       upstream_status=r.status_code)
        return r.json()

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        data = self._get('/v5/products/search', {'query': query, 'limit': str(limit)})
        items = data.get('data') if isinstance(data, dict) else None
        return items if isinstance(items, list) else []

    def get_product(self, product_id: str) -> Dict[str, Any]:
        data = self._get(f'/v5/products/{product_id}')
        return data.get('data', data) if isinstance(data, dict) else {}


def map_search_result(item: Dict[str, Any]) -> Dict[str, Any]:
    product = item.get('Product') or {}
    model = product.get('Version') or ''
    parts = model.split(' ')
    if len(parts) > 3:
        # concatenated model numbers; keep the first
        model = parts[0]
    name = product.get('Model') or ''
    if not name and product.get('Brand'):
        name = f"{product['Brand']} {model}".strip()
    return {
        'external_id': product.get('id') or None,
        'brand': product.get('Brand') or '',
        'model': model,
        'name': name,
        'release_date': item.get('Release Date') or None,
        'image_url': item.get('Thumbnail') or None,
        'specifications': {
            'category': product.get('Category') or None,
            'version': product.get('Version') or None,
        },
    }


__all__ = ['TechSpecsClient', 'map_search_result']
