# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Path-scoped CORS policies."""

from typing import Any, Dict, Sequence, Tuple

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


class ScopedCORSMiddleware:
    """Apply a different CORS policy per URL prefix.

    Prefixes are checked in order, so list the most specific first. Requests
    matching no prefix use the default policy.
    """

    def __init__(
        self,
        app: ASGIApp,
        scopes: Sequence[Tuple[str, Dict[str, Any]]],
        default: Dict[str, Any],
    ):
        self.app = app
        self.scoped = [(prefix, CORSMiddleware(app, **options)) for prefix, options in scopes]
        self.default = CORSMiddleware(app, **default)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        for prefix, handler in self.scoped:
            if path.startswith(prefix):
                await handler(scope, receive, send)
                return

        await self.default(scope, receive, send)
