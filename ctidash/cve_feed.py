# ctidash/cve_feed.py
"""Shodan CVEDB client and the local ``cves`` cache it fills."""
import logging
import re
from functools import lru_cache

import requests

from . import db
from .config import SHODAN_CVE_API, REQUEST_TIMEOUT, CVE_FEED_LIMIT, KNOWN_VENDORS
from .utils import parse_dt, utcnow

logger = logging.getLogger(__name__)

UA = "cti-dashboard/1.0 (+cvedb)"
SESSION = requests.Session()
SESSION.headers.update({"User-Agent": UA, "Accept": "application/json"})

_VENDOR_RES = [(v, re.compile(r"\b" + re.escape(v) + r"\b", re.I)) for v in KNOWN_VENDORS]


class FeedError(Exception):
    pass


class CveNotFound(Exception):
    pass


def extract_vendors(summary: str):
    if not summary: return []
    return [v for v, rx in _VENDOR_RES if rx.search(summary)]

def effective_score(cve) -> float:
    cvss3 = cve.get("cvss3") or {}
    return float(cvss3.get("score") or cve.get("cvss") or 0)

def map_feed_item(item):
    summary = item.get("summary") or ""
    published = item.get("published_time")
    return {
        "cve": item.get("cve_id") or item.get("cve"),
        "summary": summary,
        "cvss": item.get("cvss") or None,
        "cvss3": {"score": item["cvss_v3"], "vector": ""} if item.get("cvss_v3") else None,
        "kev": bool(item.get("kev")),
        "epss": item.get("epss"),
        "published": published,
        "modified": item.get("modified_time") or published,
        "references": item.get("references") or [],
        "extractedVendors": extract_vendors(summary),
    }

def fetch_latest(limit=CVE_FEED_LIMIT):
    r = SESSION.get(f"{SHODAN_CVE_API}/cves?latest&limit={min(limit, 200)}", timeout=REQUEST_TIMEOUT)
    r.raise_for_status()
    data = r.json()
    if isinstance(data, dict) and isinstance(data.get("cves"), list):
        items = data["cves"]
    elif isinstance(data, list):
        items = data
    else:
        raise FeedError("Unexpected response format from CVE feed")
    return [m for m in (map_feed_item(i) for i in items) if m["cve"]]

@lru_cache(maxsize=256)
def get_cve_raw(cve_id: str):
    """Raw CVEDB record; raises CveNotFound on 404. Only hits are memoised."""
    r = SESSION.get(f"{SHODAN_CVE_API}/cve/{cve_id}", timeout=REQUEST_TIMEOUT)
    if r.status_code == 404:
        raise CveNotFound(cve_id)
    r.raise_for_status()
    return r.json()

def parse_cve_detail(raw):
    if not raw or not raw.get("cve_id"):
        return None
    return {
        "cveId": raw["cve_id"],
        "summary": raw.get("summary"),
        "cvss": raw.get("cvss"),
        "cvss_version": raw.get("cvss_version"),
        "cvss_v2": raw.get("cvss_v2"),
        "cvss_v3": raw.get("cvss_v3"),
        "publishedTime": raw.get("published_time"),
        "references": raw.get("references") or [],
        "kev": bool(raw.get("kev")),
        "proposeAction": raw.get("propose_action"),
        "ransomwareCampaign": raw.get("ransomware_campaign"),
    }

def store_cves(cves):
    """Upsert mapped feed items into the cache. Returns how many were new."""
    if not cves: return 0
    now = utcnow()
    new = 0
    for c in cves:
        doc = dict(c)
        doc["published_at"] = parse_dt(c.get("published"))
        doc["fetched_at"] = now
        res = db.cves_coll.update_one(
            {"_id": c["cve"]}, {"$set": doc, "$setOnInsert": {"first_seen": now}}, upsert=True,
        )
        if res.upserted_id is not None:
            new += 1
    return new

def refresh_cache(limit=CVE_FEED_LIMIT):
    cves = fetch_latest(limit)
    new = store_cves(cves)
    logger.info("cve feed refreshed: %d fetched, %d new", len(cves), new)
    return {"ok": True, "fetched": len(cves), "new": new, "finished_at": utcnow().isoformat() + "Z"}

def cached_cves():
    """Cached feed, newest first; pulls the feed once when the cache is empty."""
    rows = list(db.cves_coll.find({}, {"published_at": 0, "fetched_at": 0, "first_seen": 0})
                .sort([("published_at", -1)]))
    if not rows:
        try:
            refresh_cache()
        except (requests.RequestException, FeedError) as e:
            logger.error("cve feed fetch failed: %s", e)
            raise
        rows = list(db.cves_coll.find({}, {"published_at": 0, "fetched_at": 0, "first_seen": 0})
                    .sort([("published_at", -1)]))
    for r in rows:
        r.pop("_id", None)
    return rows
