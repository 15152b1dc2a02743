"""
SEIDO - Availability Matcher
Croise les disponibilités saisies par les participants d'une intervention
pour proposer des créneaux communs.

PUR: aucune lecture/écriture en base, la route se charge de la persistance.
Une disponibilité = {user_id, user_name, user_role, date, start_time, end_time}
"""

import logging
from typing import List, Dict, Any

logger = logging.getLogger("availability_matcher")

MIN_OVERLAP_MINUTES = 30
MAX_PERFECT_MATCHES = 10
MAX_PARTIAL_MATCHES = 10
MAX_ALTERNATIVES = 3


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def empty_result() -> Dict[str, Any]:
    return {
        "perfectMatches": [],
        "partialMatches": [],
        "suggestions": [],
        "conflicts": [],
        "statistics": {
            "total_users": 0,
            "users_with_availabilities": 0,
            "total_availability_slots": 0,
            "best_match_score": 0,
        },
    }


def find_overlaps_for_date(availabilities: List[dict], target_date: str) -> List[dict]:
    """
    Tous les segments communs d'au moins 30 minutes pour une date.

    Pour chaque paire de plages qui se recouvrent, on tente d'étendre le
    segment à toutes les autres plages du jour (glouton, en gardant
    un recouvrement >= 30 min).
    score = participants / utilisateurs du jour × 100
    """
    day = [a for a in availabilities if a.get("date") == target_date]
    if len(day) < 2:
        return []

    ranges = sorted(
        (
            {
                "start": time_to_minutes(a["start_time"]),
                "end": time_to_minutes(a["end_time"]),
                "user_id": a["user_id"],
                "user_name": a.get("user_name") or "",
            }
            for a in day
        ),
        key=lambda r: r["start"],
    )
    day_users = {a["user_id"] for a in day}

    matches = []
    seen = set()
    for i in range(len(ranges)):
        for j in range(i + 1, len(ranges)):
            r1, r2 = ranges[i], ranges[j]
            if r1["user_id"] == r2["user_id"]:
                continue
            start = max(r1["start"], r2["start"])
            end = min(r1["end"], r2["end"])
            if end - start < MIN_OVERLAP_MINUTES:
                continue

            participants = [r1, r2]
            for k, r3 in enumerate(ranges):
                if k in (i, j) or r3["user_id"] in {p["user_id"] for p in participants}:
                    continue
                new_start = max(start, r3["start"])
                new_end = min(end, r3["end"])
                if new_end - new_start >= MIN_OVERLAP_MINUTES:
                    participants.append(r3)
                    start, end = new_start, new_end

            user_ids = [p["user_id"] for p in participants]
            names = {p["user_id"]: p["user_name"] for p in participants}

            key = (target_date, start, end, frozenset(user_ids))
            if key in seen:
                continue
            seen.add(key)

            matches.append({
                "date": target_date,
                "start_time": minutes_to_time(start),
                "end_time": minutes_to_time(end),
                "participant_user_ids": user_ids,
                "participant_names": [names[u] for u in user_ids],
                "match_score": round(len(user_ids) / len(day_users) * 100),
                "overlap_duration": end - start,
            })

    matches.sort(key=lambda m: (-m["match_score"], -m["overlap_duration"]))
    return matches


def find_conflicts(availabilities: List[dict], users: Dict[str, dict]) -> List[dict]:
    """Plages qui se chevauchent pour un même utilisateur et une même date"""
    conflicts = []
    for user_id, user in users.items():
        by_date: Dict[str, List[dict]] = {}
        for a in availabilities:
            if a["user_id"] == user_id:
                by_date.setdefault(a["date"], []).append(
                    {"start_time": a["start_time"], "end_time": a["end_time"]}
                )

        for date, slots in by_date.items():
            if len(slots) < 2:
                continue
            overlapping = any(
                time_to_minutes(s1["start_time"]) < time_to_minutes(s2["end_time"])
                and time_to_minutes(s2["start_time"]) < time_to_minutes(s1["end_time"])
                for idx, s1 in enumerate(slots)
                for s2 in slots[idx + 1:]
            )
            if overlapping:
                conflicts.append({
                    "user_id": user_id,
                    "user_name": user["name"],
                    "conflicting_slots": [{"date": date, "slots": slots}],
                })
    return conflicts


def find_matches(availabilities: List[dict]) -> Dict[str, Any]:
    if not availabilities:
        return empty_result()

    dates = sorted({a["date"] for a in availabilities})

    users: Dict[str, dict] = {}
    for a in availabilities:
        if a["user_id"] not in users:
            users[a["user_id"]] = {
                "user_id": a["user_id"],
                "name": a.get("user_name") or "",
                "role": a.get("user_role") or "",
            }

    all_matches = []
    partial_matches = []

    for date in dates:
        day_matches = find_overlaps_for_date(availabilities, date)
        all_matches.extend(day_matches)

        present = {a["user_id"] for a in availabilities if a["date"] == date}
        missing = [u for uid, u in users.items() if uid not in present]

        if missing and day_matches:
            best = day_matches[0]
            partial_matches.append({
                "date": date,
                "start_time": best["start_time"],
                "end_time": best["end_time"],
                "available_users": [users[uid] for uid in best["participant_user_ids"]],
                "missing_users": missing,
                "match_score": best["match_score"],
            })

    perfect = [m for m in all_matches if m["match_score"] == 100]
    imperfect = [m for m in all_matches if m["match_score"] < 100]

    suggestions = []
    if not perfect and imperfect:
        suggestions.append({
            "date": imperfect[0]["date"],
            "reason": "Aucun créneau parfait trouvé, mais des créneaux partiels sont disponibles",
            "alternatives": imperfect[:MAX_ALTERNATIVES],
        })

    statistics = {
        "total_users": len(users),
        "users_with_availabilities": len({a["user_id"] for a in availabilities}),
        "total_availability_slots": len(availabilities),
        "best_match_score": max((m["match_score"] for m in all_matches), default=0),
    }

    logger.info(
        f"[MATCHING] {len(availabilities)} disponibilités → "
        f"{len(perfect)} parfaits, {len(partial_matches)} partiels"
    )

    return {
        "perfectMatches": perfect[:MAX_PERFECT_MATCHES],
        "partialMatches": partial_matches[:MAX_PARTIAL_MATCHES],
        "suggestions": suggestions,
        "conflicts": find_conflicts(availabilities, users),
        "statistics": statistics,
    }
