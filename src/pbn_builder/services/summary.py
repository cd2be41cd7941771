from datetime import datetime

from pbn_builder.models.project import Summary


def calculate_summary(projects: list[dict], ai_model: str) -> Summary:
    """彙總所有專案：網站總數、平均建立間隔（秒）、最後建立時間。"""
    created = sorted(
        datetime.fromisoformat(entry["created_at"])
        for project in projects
        for entry in project["progress"]
        if entry.get("created_at")
    )
    total_sites = sum(len(p["progress"]) for p in projects)

    if len(created) > 1:
        gaps = [(b - a).total_seconds() for a, b in zip(created, created[1:])]
        average = sum(gaps) / len(gaps)
    else:
        average = 0.0

    return Summary(
        total_projects=len(projects),
        total_sites=total_sites,
        average_creation_time=f"{average:.2f}",
        ai_model=ai_model,
        last_site_date=created[-1].isoformat() if created else "N/A",
    )
