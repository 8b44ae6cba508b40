# metaraid

metaraid crawls the Spotify Web API one artist at a time. Starting from a
seed artist, it fetches every album, single and compilation. It then fetches
every track on them, the audio features of each track and the full profiles
of the artists involved. Each track is stored in Redis. Every other artist it
meets goes into a queue for a later crawl, so the crawl spreads across the
catalogue. A separate command copies the collected tracks into a SQLite
database for analysis.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

Settings are read from a YAML file, `config.yaml` in the working directory by
default. To print a file with every default filled in:

```
metaraid-config > config.yaml
```

Then edit the file to add one or more Spotify API clients:

```yaml
redis:
  database: 0
  host: 127.0.0.1
  port: 6379
  poolSize: 10
  minIdleConns: 3
scraper:
  seedArtistId: 5D8TBtxnP5GZm9wUBQ8OTc
  workerCount: 5
spotify:
  clients:
    - clientId: placeholder
      clientSecret: secret
      name: main
  maxRetryDuration: 1h0m0s
```

Rules for the file:

- Keys are matched without regard to case.
- Unknown keys in the file are rejected.
- `maxRetryDuration` takes a duration such as `90s`, `30m`, `1h30m` or
  `250ms`. A plain number is read as nanoseconds.
- `minIdleConns` and `workerCount` are read but not used. The Redis pool is
  sized by `poolSize` alone. The number of workers is the number of usable
  clients.

Environment variables override the file:

- A variable name is lower-cased and its underscores become dots.
  `REDIS_HOST=10.0.0.5` sets `redis.host`, and `SCRAPER_SEEDARTISTID=...`
  sets `scraper.seedArtistId`.
- Variables that match no setting are ignored.
- A value that contains a comma is split into a list. No single-value setting
  accepts a list, so such a value is rejected.

The functions behind this are in `metaraid.config`:

- `load(path, environ)` returns a `Config` holding `RedisConfig`,
  `ScraperConfig` and `SpotifyConfig`.
- `dump_default()` returns the default YAML.
- `parse_duration` and `format_duration` convert between duration text and
  seconds.

## Scraping

```
metaraid-scraper [--config config.yaml]
```

1. The scraper prints a banner and loads the configuration.
2. It connects to Redis and exits if Redis does not answer.
3. It gets an access token for each configured client using the
   client-credentials flow. It then probes the API with each client.
4. A client whose rate limit outlasts `maxRetryDuration` is marked cold and
   gets no worker. Every other client gets one worker.
5. Jobs left in progress by an earlier run are put back in the pending set.
   If the pending set is then empty, the seed artist is queued.
6. A feeder thread keeps up to twenty jobs in an in-memory queue, taking five
   at a time from Redis.

For each artist, a worker does the following:

- It stores the artist's tracks.
- It queues every other artist that appears on those tracks, unless that
  artist was ever queued before.
- It marks the job done.
- It logs its requests and tracks once a minute.

If a client hits a rate limit longer than `maxRetryDuration`, its worker does
three things. It marks the client cold, puts the job back in the queue and
stops.

A manager checks the pool every five seconds. Once no worker is running, the
scraper shuts down. Press Ctrl+C to stop it by hand.

Other errors end the process with status 1. This covers Redis write failures
and API errors other than rate limits.

Redis layout:

| key            | contents                                          |
|----------------|---------------------------------------------------|
| `jobs_pending` | set of artist ids waiting to be crawled           |
| `jobs_working` | set of artist ids being crawled                   |
| `jobs_done`    | set of artist ids already crawled                 |
| `jobs:<id>`    | hash whose `status` is pending, working or done   |
| `tracks:<id>`  | MessagePack-encoded track, features and artists   |

## Exporting

```
metaraid-export [--config config.yaml] [--database meta_raid.db]
```

This command reads every `tracks:*` key from Redis and inserts it into the
`tracks` table of the SQLite file. It creates the table if it is missing.
Each row holds:

- the track and album names and ids
- the album type
- the release date, as an ISO date, or NULL when the date or its precision is
  missing or malformed
- the cover images in three sizes
- the track's popularity
- the audio features
- the explicit flag, the preview URL and the type
- the genres of all artists on the track, without repeats, as a JSON list
- the main artist's follower count, popularity and images

Tracks stored without audio features go to the `tracks_parts` table. That
table has only three columns: `track_id`, `name` and `artis`, the last
holding the main artist.

When the export is done, the command logs the row count of `tracks`, the time
taken and the rows per second.

The helpers are in `metaraid.export`:

- `create_tables(conn)`
- `export(conn, rdb)`
- `get_image(images, index)`
- `extract_unique_genres(artists)`

## Library use

- `metaraid.spotify`:
  - `SpotifyApi` handles authenticated GET requests. It retries on HTTP 429
    and raises `MaxRetryDurationExceeded` when the wait would be too long.
  - `Client.fetch_artist_tracks(artist_id)` returns an artist's tracks and
    the number of requests made.
  - `get_artists(tracks, main_artist)` returns the distinct other artists on
    the tracks.
- `metaraid.track.FullerTrack` bundles a track with its features and artists.
  It has `serialize()` and `FullerTrack.deserialize(data)`.
- `metaraid.database` holds the Redis job-queue operations:
  - `add_jobs`
  - `ensure_seed_job`
  - `pop_jobs`
  - `recover_in_progress_tasks`
  - `mark_job_done`
  - `insert_tracks`
- `metaraid.scraper.Scraper` runs the worker pool:
  - `start()` starts the workers.
  - `wait(timeout)` waits until the scraper asks to shut down.
  - `stop()` ends every thread.
- `metaraid.fatal`:
  - `die` logs an error and exits with status 1.
  - `fatal_on_error` turns exceptions raised in a block into such an exit.

## Limitations

- Cold clients are not retried while the scraper runs. A client that is rate
  limited at start-up or during the crawl stays unused until the next run.
- The export always appends. Running it twice over the same data writes every
  row twice.