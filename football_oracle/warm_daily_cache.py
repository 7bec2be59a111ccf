from __future__ import annotations

import json

from football_oracle.services.api_football import FootballAPI, relative_dates


def main() -> None:
    api = FootballAPI()
    purged = api.purge_expired()
    requested_dates = relative_dates(api.clock().date())

    fixtures_by_date: dict[str, int] = {}
    leagues: set[int] = set()
    for label, date_text in requested_dates.items():
        fixtures = api.get_fixtures_by_date(date_text)
        fixtures_by_date[label] = len(fixtures)
        for match in fixtures:
            league_id = int((match.get("league") or {}).get("id") or 0)
            if league_id > 0:
                leagues.add(league_id)

    print(
        json.dumps(
            {
                "requested_dates": requested_dates,
                "fixtures_by_date": fixtures_by_date,
                "leagues_seen": len(leagues),
                "expired_entries_purged": purged,
                "api_budget": api.budget_status(),
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    main()
