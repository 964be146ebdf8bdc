# phigrank

A library for working with Phigros player data: looking up songs by id,
title or nickname, fetching cloud saves, computing ranking scores (RKS),
finding the accuracy a chart needs to raise a player's displayed RKS,
keeping player scores in SQLite, and binding chat-platform accounts to
game session tokens.

It uses only the Python standard library and needs Python 3.10 or later.

## Modules

| Module | Purpose |
| --- | --- |
| `phigrank.models` | Data types: `SongRecord`, `RksRecord`, `RksResult`, `GameSave`, `SaveSummary`, `SongInfo`, `SongDifficulty`, `SongNickname`, `SongQuery`, `PredictedConstants`, `PredictionResponse`, `B30Record`, `B30Result`, `ChartScore`, `ChartScoreHistory`, `PlayerArchive`, `PlayerBasicInfo`, `ArchiveConfig`, `RKSRankingEntry` |
| `phigrank.song` | `SongService`: song search over a catalogue you supply; `SongNotFoundError`, `AmbiguousSongNameError` |
| `phigrank.accounts` | `UserProfile`, `InternalUser`, `PlatformBinding`, `BindRequest`, `IdentifierRequest`, `UnbindInitiateResponse`, `UnbindVerificationCode`, `TokenListResponse`, `PlatformBindingInfo`, `ApiResponse` |
| `phigrank.rks` | `calculate_chart_rks`, `calculate_player_rks_details`, `sort_by_rks` |
| `phigrank.phigros` | `PhigrosClient` for the cloud save service; `calculate_checksum`, `verify_save_data`, `build_rks_result`, `find_song_record` |
| `phigrank.push` | `calculate_target_chart_push_acc`, `target_rks_threshold` |
| `phigrank.archive_store` | `ArchiveStore`: reading and deleting player archives in SQLite, with a five-minute in-memory cache |
| `phigrank.archive` | `PlayerArchiveService`: storing scores and recomputing RKS and push accuracies |
| `phigrank.reports` | `PlayerStats`, `SongDifficultyScore`, `build_player_stats`, `build_push_acc_map`, `build_song_difficulty_scores`, `leaderboard_limit` |
| `phigrank.users` | `UserService`: internal users, platform bindings and unbind verification codes in SQLite |
| `phigrank.binding` | `bind_user`, `list_tokens`, `unbind_user` |
| `phigrank.ranking` | `get_rks_ranking`, `ranking_for_display` |

## RKS

A chart's RKS is `((acc - 55) / 45) ** 2 * constant` when the accuracy is at
least 70%, and 0 below that. A player's RKS is the sum of the best 27 chart
values plus the best 3 values among charts at 100% accuracy, divided by 30.

```python
from phigrank.models import RksRecord, SongRecord
from phigrank.rks import calculate_chart_rks, calculate_player_rks_details

calculate_chart_rks(100.0, 15.0)   # 15.0
calculate_chart_rks(65.0, 15.0)    # 0.0

record = RksRecord.from_song_record(
    "song.composer", "Song", "IN", 15.0, SongRecord(score=1_000_000, acc=100.0)
)
exact, rounded = calculate_player_rks_details([record])
```

`calculate_player_rks_details` returns the exact value and the value
rounded to two decimals.

## Push accuracy

`calculate_target_chart_push_acc(chart_id, constant, sorted_records)` takes a
chart id of the form `"<song id>-<difficulty>"`, the chart's constant and all
of the player's records sorted highest RKS first (`sort_by_rks` does this).
It returns the lowest accuracy on that chart that raises the two-decimal RKS
by 0.01, `100.0` when no accuracy on that chart can, and `None` when the
chart id has no `-`.

## Songs

`SongService(songs, difficulties, nicknames)` searches the `SongInfo` list,
the `SongDifficulty` mapping keyed by song id and the nickname mapping
(song name to a list of nicknames) it is given. `search_song` tries, in
order: exact id, case-insensitive title, case-insensitive nickname, a
unique partial title match, a unique partial nickname match. Several
partial matches raise `AmbiguousSongNameError`; no match raises
`SongNotFoundError`.

## Cloud saves

`PhigrosClient(app_id, app_key, base_url, timeout=30.0)` sends its requests
with the given application credentials:

- `fetch_summary(token)` returns the save summary document,
- `download_save(url)` returns the raw file,
- `fetch_save(token)` does both and checks the file with `verify_save_data`,
  raising `InvalidSaveSizeError` for files of 30 bytes or fewer and
  `ChecksumMismatchError` when the MD5 differs,
- `get_profile(token)` returns a `UserProfile`, raising `AuthError` on
  HTTP 401.

Other failures raise `PhigrosError`.

`build_rks_result(save, song_names)` turns a decoded `GameSave` into an
`RksResult` of every chart with accuracy of at least 70% and a positive
constant. `find_song_record(save, song_id, difficulty)` returns one song's
records.

## Storage

`ArchiveStore`, `PlayerArchiveService` and `UserService` each take a SQLite
path or an open `sqlite3.Connection`. Call `init_tables()` once to create
their tables, and `close()` when done. Database failures are raised as
`DatabaseError`.

- `PlayerArchiveService.update_player_scores_from_rks_records` replaces a
  player's current scores and recomputes their RKS and push accuracies.
  `recalculate_player_rks` weights the best-N average and the top-3 phi
  average by how many phi charts there are (none, one, two, three or more).
- `get_rks_ranking(store, limit)` lists the stored players by RKS;
  `ranking_for_display(store, limit=None)` shows 20 by default and never
  more than 100.
- `UserService` binds platform accounts to internal users. Verification
  codes are 8 letters or digits, valid for five minutes, and are deleted
  once used.

## Binding requests

`bind_user(users, BindRequest(...))`, `list_tokens(users, IdentifierRequest(...))`
and `unbind_user(users, IdentifierRequest(...), fetch_user)` return an
`ApiResponse`; `ApiResponse.to_dict()` gives its JSON-ready form. Unbinding
works with the matching token, or in two steps: a request with neither token
nor code issues a verification code; a request with the code then calls
`fetch_user(stored_token)`, whose returned mapping must hold the code as its
`selfIntro`. Wrong combinations raise `BadRequestError`; a profile that does
not confirm the code raises `ProfileVerificationFailedError`.

## What the package does not do

- It does not decrypt or decode a downloaded save file: `fetch_save` returns
  the raw bytes, and the save helpers work on a `GameSave` you build.
- It ships no song catalogue; `SongService` searches only what you pass in.
- It reads no configuration file or environment variables.
- It runs no HTTP server and has no command-line program.
- It does not render report or leaderboard images; `phigrank.reports`
  computes the figures such a report would show.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.