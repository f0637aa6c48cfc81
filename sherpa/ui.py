"""A single page UI listing scaling events."""

from __future__ import annotations

import html

from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response

UI_PATH = "/ui"

_PAGE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>Sherpa</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0"/>

    <style type="text/css">
        body { margin: 0; font-family: sans-serif; }
        nav { background: #00bfa5; color: #fff; padding: 0 1em; height: 56px; line-height: 56px; }
        nav a { color: #fff; text-decoration: none; }
        .brand-logo { font-size: 1.8em; }
        .version { float: right; }
        .container { margin: 0 auto; max-width: 1280px; width: 90%; }
        table.events { width: 100%; border-collapse: collapse; margin-top: 1em; }
        table.events th, table.events td { text-align: left; padding: 0.6em; border-bottom: 1px solid #ddd; }
        table.events tbody tr:hover { background: #f2f2f2; }
    </style>
</head>
<body>

<nav class="top-nav">
    <div class="container">
        <a href="/ui" class="brand-logo">Sherpa</a>
        <span class="version">{{version}}</span>
    </div>
</nav>

<div class="container">
    <div class="section">
        <table class="events highlight"></table>
    </div>
</div>

<script>
    (function () {
        function cell(text) {
            var td = document.createElement('td');
            td.textContent = text;
            return td;
        }

        function timeConverter(ts) {
            var a = new Date(ts / 1000000);
            return a.getUTCFullYear() + "-" + a.getUTCMonth() + "-" + a.getUTCDate() + " " +
                a.getUTCHours() + ':' + a.getUTCMinutes() + ':' + a.getUTCSeconds() + "." +
                a.getUTCMilliseconds() + " +0000 UTC";
        }

        function renderEvents(events) {
            var table = document.querySelector('table.events');
            table.innerHTML = '<thead><tr><th>ID</th><th>Job:Group</th>' +
                '<th>Status</th><th>Time</th></tr></thead>';
            var tbody = document.createElement('tbody');
            Object.entries(events || {}).forEach(function (entry) {
                Object.entries(entry[1]).forEach(function (group) {
                    var tr = document.createElement('tr');
                    tr.appendChild(cell(entry[0]));
                    tr.appendChild(cell(group[0]));
                    tr.appendChild(cell(group[1].Status));
                    tr.appendChild(cell(timeConverter(group[1].Time)));
                    tbody.appendChild(tr);
                });
            });
            table.appendChild(tbody);
        }

        fetch('/v1/scale/status')
            .then(function (resp) { return resp.json(); })
            .then(renderEvents);
    })();
</script>

</body>
</html>
"""


class UIServer:
    """Serves the scaling events page."""

    def __init__(self, version: str = "") -> None:
        self.version = version

    def redirect(self, request: Request) -> Response:
        """Send the client to the UI page."""
        return redirect(UI_PATH, code=303)

    def get(self, request: Request) -> Response:
        """Render the UI page."""
        page = _PAGE.replace("{{version}}", html.escape(self.version))
        return Response(page, status=200, mimetype="text/html")