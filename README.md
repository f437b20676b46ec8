# cloudkit

Building blocks for cloud applications that do not depend on any one
storage or logging service. There are no third-party dependencies.

- **Blob storage.** `cloudkit.blob.Bucket` wraps any back end that
  implements the abstract `cloudkit.driver.Bucket`. It provides readers,
  writers, range reads and deletes. If a write does not name a content type,
  the bucket detects one from the data. `cloudkit.fileblob` is a back end
  that stores objects as files under a local directory.
- **Health checks.** `cloudkit.health.Handler` is a WSGI application. It
  answers `200 ok` when every registered `Checker` is healthy and
  `500 unhealthy` otherwise. `cloudkit.health.handle_live` always answers
  `200 ok`. `cloudkit.sqlhealth.SQLChecker` calls a ping function in a
  background thread until one call succeeds.
- **Request logging.** `cloudkit.requestlog.Handler` is WSGI middleware. It
  records each request as an `Entry` and passes the entry to a `Logger`.
  `cloudkit.ncsa.NCSALogger` writes lines in the Combined Log Format.
  `cloudkit.stackdriver.StackdriverLogger` writes one JSON record per line.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Blob storage

```python
from cloudkit import fileblob
from cloudkit.blob import WriterOptions, is_not_exist

bucket = fileblob.new_bucket("/tmp/my-bucket")   # the directory must already exist

with bucket.new_writer("greetings/hello.txt", WriterOptions(content_type="text/plain")) as w:
    w.write(b"Hello, World!\n")

with bucket.new_reader("greetings/hello.txt") as r:
    print(r.read(), r.content_type(), r.size(), r.mod_time())

with bucket.new_range_reader("greetings/hello.txt", 1, 4) as r:
    print(r.read())   # b"ello"

try:
    bucket.delete("missing.txt")
except Exception as err:
    assert is_not_exist(err)
```

Behaviour of the bucket:

- `new_range_reader(key, offset, length)` reads at most `length` bytes,
  starting at `offset`.
  - A `length` of `0` reads only the metadata.
  - A negative `length` reads to the end of the object.
  - A negative `offset` raises `ValueError`.
- Back-end failures on read and delete raise `cloudkit.blob.BlobError`.
  `is_not_exist(err)` tells you whether the object was missing.
- `WriterOptions(content_type=...)` is parsed and normalised before it is
  stored. For example, `FORM-DATA;name="foo"` becomes `form-data; name=foo`.
  An invalid type raises `ValueError`.
- When no content type is given, the writer buffers data until it holds 512
  bytes, or until it is closed. It then detects the type with
  `cloudkit.blob.detect_content_type` (HTML, XML, PDF, common image, audio,
  video and archive formats, plain text), falling back to
  `application/octet-stream`. The object is complete only after `close()`.

The file back end:

- It accepts only keys made of ASCII letters, digits, `/`, `.`, space, `_`
  and `-`.
- It rejects keys that are not clean relative paths, such as `./a`, `a//b`,
  `../a` and `/a`.
- It rejects keys that end in `.attrs`.

`cloudkit.fileblob.resolve_path(key)` applies these rules and returns the
relative file path. Each object's content type is stored beside it, in a
JSON file named `<object>.attrs`.

To use another storage service, subclass `cloudkit.driver.Bucket`,
`cloudkit.driver.Reader` and `cloudkit.driver.Writer`. Raise
`cloudkit.driver.DriverError` with `ErrorKind.NOT_FOUND` for missing
objects. Then wrap the back end with `cloudkit.blob.Bucket(...)`.

## Health checks

```python
from cloudkit.health import Handler, handle_live
from cloudkit.sqlhealth import SQLChecker

checker = SQLChecker(lambda: connection.execute("SELECT 1"))
readiness = Handler()
readiness.add(checker)
# Mount `readiness` and `handle_live` in your WSGI router.
```

`SQLChecker.check_health()` raises `RuntimeError` until a ping has succeeded.
After a failed ping it waits 250 ms, then doubles the wait each time, up to
30 seconds. Call `checker.stop()` when the application shuts down.

## Request logging

```python
import sys
from cloudkit.requestlog import Handler
from cloudkit.ncsa import NCSALogger

logger = NCSALogger(sys.stdout.buffer, on_error=print)
app = Handler(logger, my_wsgi_app)
```

Both loggers write bytes to a binary stream. They pass any write error to
`on_error`.

The middleware logs the entry when the server closes the response. Before
logging, it reads whatever request body the application left unread, up to
`Content-Length`.

The entry records:

- the method, URL, protocol and user agent;
- the referer, the remote address, and the server address when it is an IP
  address;
- the status, which defaults to 200;
- the header and body sizes of the request and of the response;
- the latency.

`cloudkit.ncsa.format_entry(entry)` returns one log line.
`cloudkit.stackdriver.format_latency(delta)` formats a duration such as
`5.123456000s`.

## What is not included

- The only storage back end is the local-directory one. There are no back
  ends for hosted object stores.
- There is no HTTP server: the handlers are plain WSGI applications to run
  under a server of your choice.
- There is no database driver: `SQLChecker` takes a ping function that you
  supply.

## Running the tests

```
pytest
```