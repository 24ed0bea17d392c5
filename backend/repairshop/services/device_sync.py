from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from repairshop import get_db
from repairshop.models.catalog import Device
from repairshop.services.techspecs import TechSpecsClient, map_search_result

logger = logging.getLogger(__name__)

# Search phrases that return current flagship lines for common brands
BRAND_QUERIES = {
    'apple': 'Apple iPhone 16',
    'samsung': 'Samsung Galaxy S24',
    'google': 'Google Pixel 9 Pro',
    'oneplus': 'OnePlus 12',
    'xiaomi': 'Xiaomi 14',
    'motorola': 'Motorola Edge 50',
}


def _find_existing(info: Dict[str, Any]) -> Optional[Device]:
    session = get_db()
    if info.get('external_id'):
        found = session.execute(select(Device).where(Device.external_id == str(info['external_id']))).scalar_one_or_none()
        if found:
            return found
    return session.execute(
        select(Device).where(func.lower(Device.brand) == info['brand'].lower(),
                             func.lower(Device.name) == info['name'].lower())
    ).scalars().first()


def _device_from_info(info: Dict[str, Any]) -> Device:
    return Device(
        brand=info['brand'],
        model_name=info['model'] or info['name'],
        name=info['name'],
        external_id=str(info['external_id']) if info.get('external_id') else None,
        release_date=info.get('release_date'),
        image_url=info.get('image_url'),
        device_type='smartphone',
        specifications=info.get('specifications') or {},
        is_active=True,
    )


def sync_devices(client: TechSpecsClient, brand: Optional[str] = None, limit: int = 10,
                 auto_import: bool = False) -> Dict[str, Any]:
    """Compare provider results with the catalog; backfill and optionally import.

    Returns counts plus the new device infos (for confirmation when auto_import is off).
    """
    session = get_db()
    query = BRAND_QUERIES.get((brand or '').lower(), brand) if brand else 'iPhone 16'
    logger.info('Device sync: searching %r (limit %d)', query, limit)
    items = client.search(query, limit * 2)
    # dedupe by lowercased name
    unique: Dict[str, Dict[str, Any]] = {}
    for item in items:
        info = map_search_result(item)
        if not info['name'] or not info['brand']:
            continue
        unique.setdefault(info['name'].strip().lower(), info)
    candidates = list(unique.values())[:limit]

    existing, new, errors = [], [], []
    updated = 0
    for info in candidates:
        device = _find_existing(info)
        if device is None:
            new.append(info)
            continue
        existing.append(info)
        changed = False
        if not device.image_url and info.get('image_url'):
            device.image_url = info['image_url']
            changed = True
        if not device.release_date and info.get('release_date'):
            device.release_date = info['release_date']
            changed = True
        if changed:
            updated += 1

    imported = 0
    if auto_import:
        seen_ids = set()
        for info in new:
            ext = info.get('external_id')
            if ext and ext in seen_ids:
                errors.append({'name': info['name'], 'error': f'duplicate external_id {ext}'})
                continue
            seen_ids.add(ext)
            session.add(_device_from_info(info))
            imported += 1
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning('Device sync: commit failed: %s', e.orig)
        errors.append({'name': None, 'error': 'catalog write failed'})
        updated = imported = 0
    logger.info('Device sync done: %d fetched, %d existing, %d new, %d updated, %d imported',
                len(candidates), len(existing), len(new), updated, imported)
    return {
        'query': query,
        'fetched': len(candidates),
        'existing': len(existing),
        'new': len(new),
        'updated': updated,
        'imported': imported,
        'new_devices': new if not auto_import else [],
        'errors': errors,
    }


__all__ = ['sync_devices', 'BRAND_QUERIES']
