"""FastAPI app: owner dashboard API, site generation stream, request-time sites."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs

from fastapi import FastAPI, Header, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import Base64Bytes, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import Services, Settings, build_services
from .editor import ProfileEditor, Upload
from .errors import (
    AuthorizationError,
    BizsiteError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from .hours import format_hours, is_currently_open
from .renderer import page_key_for_path

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    AuthorizationError: 403,
    TransientIOError: 503,
}

ASSET_TYPES = {
    "css/style.css": "text/css; charset=utf-8",
    "js/site.js": "application/javascript; charset=utf-8",
    "assets/images/placeholder.svg": "image/svg+xml",
}


class _RequestAuth:
    """Auth view for one request: the identity behind its bearer token."""

    def __init__(self, identity):
        self._identity = identity

    def current_identity(self):
        return self._identity


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


def _bearer(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthorizationError("Missing bearer token")
    return authorization[len("bearer "):].strip()


class Credentials(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    business_id: str
    business_type: str


class UploadBody(BaseModel):
    """One base64-encoded file attached to a section save."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    filename: str
    data: Base64Bytes
    content_type: str = "application/octet-stream"


class SectionSave(BaseModel):
    payload: Any
    uploads: dict[str, UploadBody] = Field(default_factory=dict)

    def to_uploads(self) -> dict[str, Upload]:
        return {
            path: Upload(filename=item.filename, content=item.data, content_type=item.content_type)
            for path, item in self.uploads.items()
        }


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services(Settings.from_env())
    app = FastAPI(title="Business Site Builder")
    app.state.services = services

    @app.exception_handler(BizsiteError)
    async def _bizsite_error(request: Request, exc: BizsiteError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        if status == 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        body = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, ValidationError):
            body["section"] = exc.section
            body["problems"] = exc.problems
        return JSONResponse(body, status_code=status)

    async def _identity(token: str):
        identity = await services.auth.verify_token(token)
        if identity is None:
            raise AuthorizationError("Session expired, sign in again")
        return identity

    async def _editor(authorization: str | None) -> ProfileEditor:
        identity = await _identity(_bearer(authorization))
        return ProfileEditor(
            services.repository,
            services.blobs,
            _RequestAuth(identity),
            catalog=services.catalog,
        )

    # -- dashboard ----------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return DASHBOARD_HTML

    @app.post("/api/signup")
    async def signup(body: Credentials):
        session = await services.auth.sign_up(body.email, body.password)
        return {"token": session.token, "uid": session.identity.uid, "email": session.identity.email}

    @app.post("/api/signin")
    async def signin(body: Credentials):
        session = await services.auth.sign_in(body.email, body.password)
        return {"token": session.token, "uid": session.identity.uid, "email": session.identity.email}

    @app.post("/api/register", status_code=201)
    async def register(body: RegisterRequest, authorization: str | None = Header(default=None)):
        editor = await _editor(authorization)
        await editor.register(body.business_id, body.business_type)
        return editor.form_state()

    @app.get("/api/profile")
    async def get_profile(authorization: str | None = Header(default=None)):
        editor = await _editor(authorization)
        if await editor.load() is None:
            raise NotFoundError("No business found for this account")
        return editor.form_state()

    @app.put("/api/profile/sections/{section_key}")
    async def save_section(
        section_key: str,
        body: SectionSave,
        authorization: str | None = Header(default=None),
    ):
        editor = await _editor(authorization)
        if await editor.load() is None:
            raise NotFoundError("No business found for this account")
        normalized = await editor.submit(section_key, body.payload, uploads=body.to_uploads())
        return {
            "section": normalized.key,
            "value": normalized.value,
            "warnings": normalized.warnings,
            "previewUrl": editor.preview_url(),
        }

    @app.get("/api/generate")
    async def generate(token: str):
        """Generate the signed-in owner's site via Server-Sent Events."""
        identity = await _identity(token)

        async def event_stream():
            try:
                yield _sse("progress", "Loading business profile...")
                profile = await services.repository.find_by_owner(identity.uid)
                if profile is None:
                    yield _sse("error", "No business found for this account.")
                    return

                output_dir = services.settings.output_dir / f"site-{profile.business_id}"
                queue: asyncio.Queue[str] = asyncio.Queue()
                task = asyncio.create_task(
                    services.generator.generate(
                        profile.business_id,
                        profile.business_type,
                        output_dir,
                        profile=profile,
                        on_progress=queue.put_nowait,
                    )
                )
                while not task.done() or not queue.empty():
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=0.1)
                    except asyncio.TimeoutError:
                        continue
                    yield _sse("progress", message)
                result = await task

                yield _sse("complete", json.dumps({
                    "businessId": profile.business_id,
                    "outputDir": str(result.output_dir),
                    "files": len(result.files),
                    "degradedPages": result.degraded_pages,
                    "previewUrl": f"/sites/{profile.business_id}/",
                }))

            except BizsiteError as e:
                yield _sse("error", str(e))

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    # -- request-time sites -------------------------------------------------

    async def _render_page(business_id: str, page: str) -> HTMLResponse:
        try:
            profile = await services.repository.get(business_id)
        except NotFoundError:
            return HTMLResponse("Site not found.", status_code=404)
        entry = services.catalog.lookup(profile.business_type)
        page_key = page_key_for_path(page)
        if page_key not in entry.pages:
            return HTMLResponse("Page not found.", status_code=404)

        shell = services.generator.build_page(business_id, entry, page_key)
        html = await services.renderer.render(shell, profile, page_key, now=datetime.now())
        return HTMLResponse(html)

    @app.get("/sites/{business_id}/", response_class=HTMLResponse)
    async def site_home(business_id: str):
        return await _render_page(business_id, "/")

    @app.get("/sites/{business_id}/status")
    async def site_status(business_id: str):
        profile = await services.repository.get(business_id)
        hours = profile.basic_info.hours
        return {
            "businessId": business_id,
            "open": is_currently_open(hours, datetime.now()),
            "hours": [{"day": day, "hours": text} for day, text in format_hours(hours)],
        }

    @app.post("/sites/{business_id}/contact", status_code=201)
    async def site_contact(business_id: str, request: Request):
        if request.headers.get("content-type", "").startswith("application/json"):
            payload = await request.json()
        else:
            body = (await request.body()).decode("utf-8")
            payload = {key: values[0] for key, values in parse_qs(body).items()}
        message_id = await services.repository.save_message(business_id, payload)
        return {"id": message_id}

    @app.get("/sites/{business_id}/{page}", response_class=HTMLResponse)
    async def site_page(business_id: str, page: str):
        return await _render_page(business_id, page)

    @app.get("/sites/{business_id}/{asset_path:path}")
    async def site_asset(business_id: str, asset_path: str):
        if asset_path not in ASSET_TYPES:
            return Response("Not found.", status_code=404, media_type="text/plain")
        try:
            profile = await services.repository.get(business_id)
        except NotFoundError:
            return Response("Not found.", status_code=404, media_type="text/plain")
        entry = services.catalog.lookup(profile.business_type)
        content = services.generator.build_asset(business_id, entry, asset_path)
        return Response(content, media_type=ASSET_TYPES[asset_path])

    return app


# ---------------------------------------------------------------------------
# Inline HTML: owner dashboard
# ---------------------------------------------------------------------------

DASHBOARD_HTML = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Business Site Builder</title>
<style>
  *, *::before, *::after { margin: 0; padding: 0; box-sizing: border-box; }
  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
    background: #f0f2f5;
    color: #1a1a2e;
    min-height: 100vh;
    padding: 32px 20px;
  }
  .card {
    background: white;
    border-radius: 16px;
    box-shadow: 0 1px 3px rgba(0,0,0,0.08), 0 8px 24px rgba(0,0,0,0.06);
    padding: 32px;
    max-width: 760px;
    margin: 0 auto 20px;
  }
  h1 { font-size: 22px; margin-bottom: 4px; }
  h2 { font-size: 16px; margin-bottom: 12px; }
  .subtitle { font-size: 14px; color: #6b7280; margin-bottom: 20px; }
  label { display: block; font-size: 13px; font-weight: 600; color: #4a5568; margin: 10px 0 4px; }
  input, select, textarea {
    width: 100%;
    padding: 10px 14px;
    border: 1px solid #d1d5db;
    border-radius: 10px;
    font-size: 14px;
  }
  textarea { font-family: ui-monospace, SFMono-Regular, Menlo, monospace; min-height: 160px; }
  button {
    margin-top: 12px;
    padding: 10px 20px;
    background: #1a1a2e;
    color: white;
    border: none;
    border-radius: 10px;
    font-size: 14px;
    font-weight: 600;
    cursor: pointer;
  }
  button:disabled { background: #9ca3af; cursor: not-allowed; }
  .hidden { display: none; }
  .row { display: flex; gap: 10px; }
  .row > * { flex: 1; }
  #notices { position: fixed; top: 16px; right: 16px; width: 320px; }
  .notice { padding: 12px 16px; border-radius: 10px; margin-bottom: 8px; font-size: 14px; }
  .notice.success { background: #d1fae5; color: #065f46; }
  .notice.warning { background: #fef3c7; color: #92400e; }
  .notice.error { background: #fee2e2; color: #991b1b; }
  #progress .step { font-size: 14px; color: #6b7280; padding: 4px 0; }
</style>
</head>
<body>
<div id="notices"></div>

<div class="card" id="auth-card">
  <h1>Business Site Builder</h1>
  <p class="subtitle">Sign in to edit your business website.</p>
  <label for="email">Email</label>
  <input id="email" type="email">
  <label for="password">Password</label>
  <input id="password" type="password">
  <div class="row">
    <button onclick="authenticate('signin')">Sign in</button>
    <button onclick="authenticate('signup')">Create account</button>
  </div>
</div>

<div class="card hidden" id="register-card">
  <h2>Register your business</h2>
  <label for="business-id">Business id</label>
  <input id="business-id" placeholder="le-bistro">
  <label for="business-type">Business type</label>
  <select id="business-type">
    <option value="restaurant">Restaurant</option>
    <option value="hairdresser">Hair salon</option>
    <option value="independent">Coach / Consultant</option>
    <option value="retail">Shop</option>
  </select>
  <button onclick="registerBusiness()">Create</button>
</div>

<div class="card hidden" id="editor-card">
  <h1 id="editor-title"></h1>
  <p class="subtitle"><a id="preview-link" target="_blank">Preview site</a></p>
  <label for="section-key">Section</label>
  <select id="section-key" onchange="showSection()"></select>
  <label for="section-json">Content (JSON)</label>
  <textarea id="section-json" oninput="unsaved = true"></textarea>
  <button onclick="saveSection()">Save section</button>
  <button onclick="generateSite()" id="generate-btn">Generate site</button>
  <div id="progress"></div>
</div>

<script>
  let token = null;
  let state = null;
  let unsaved = false;

  window.addEventListener('beforeunload', (e) => {
    if (unsaved) { e.preventDefault(); e.returnValue = ''; }
  });

  function notify(message, kind) {
    const el = document.createElement('div');
    el.className = 'notice ' + kind;
    el.textContent = message;
    document.getElementById('notices').appendChild(el);
    setTimeout(() => el.remove(), 5000);
  }

  async function api(method, path, body) {
    const response = await fetch(path, {
      method,
      headers: Object.assign(
        { 'Content-Type': 'application/json' },
        token ? { 'Authorization': 'Bearer ' + token } : {}
      ),
      body: body ? JSON.stringify(body) : undefined,
    });
    const data = await response.json();
    if (!response.ok) {
      const problems = data.problems ? ': ' + data.problems.join('; ') : '';
      throw new Error((data.section ? data.section : data.detail) + problems);
    }
    return data;
  }

  async function authenticate(kind) {
    try {
      const session = await api('POST', '/api/' + kind, {
        email: document.getElementById('email').value,
        password: document.getElementById('password').value,
      });
      token = session.token;
      document.getElementById('auth-card').classList.add('hidden');
      await loadProfile();
    } catch (err) {
      notify(err.message, 'error');
    }
  }

  async function loadProfile() {
    try {
      showEditor(await api('GET', '/api/profile'));
    } catch (err) {
      document.getElementById('register-card').classList.remove('hidden');
    }
  }

  async function registerBusiness() {
    try {
      const data = await api('POST', '/api/register', {
        businessId: document.getElementById('business-id').value.trim(),
        businessType: document.getElementById('business-type').value,
      });
      document.getElementById('register-card').classList.add('hidden');
      showEditor(data);
    } catch (err) {
      notify(err.message, 'error');
    }
  }

  function showEditor(data) {
    state = data;
    document.getElementById('editor-card').classList.remove('hidden');
    document.getElementById('editor-title').textContent = data.businessId + ' (' + data.displayName + ')';
    const link = document.getElementById('preview-link');
    link.href = '/sites/' + data.businessId + '/';
    const select = document.getElementById('section-key');
    select.innerHTML = '';
    Object.keys(data.sections).forEach((key) => {
      const option = document.createElement('option');
      option.value = key;
      option.textContent = key;
      select.appendChild(option);
    });
    showSection();
  }

  function showSection() {
    const key = document.getElementById('section-key').value;
    document.getElementById('section-json').value = JSON.stringify(state.sections[key], null, 2);
  }

  async function saveSection() {
    const key = document.getElementById('section-key').value;
    let payload;
    try {
      payload = JSON.parse(document.getElementById('section-json').value);
    } catch (err) {
      notify('Content is not valid JSON', 'error');
      return;
    }
    try {
      const result = await api('PUT', '/api/profile/sections/' + encodeURIComponent(key), { payload });
      state.sections[key] = result.value;
      unsaved = false;
      notify('Saved', 'success');
      result.warnings.forEach((w) => notify(w, 'warning'));
    } catch (err) {
      notify(err.message, 'error');
    }
  }

  function generateSite() {
    const btn = document.getElementById('generate-btn');
    const progress = document.getElementById('progress');
    btn.disabled = true;
    progress.innerHTML = '';

    const source = new EventSource('/api/generate?token=' + encodeURIComponent(token));
    const addStep = (text) => {
      const step = document.createElement('div');
      step.className = 'step';
      step.textContent = text;
      progress.appendChild(step);
    };
    source.addEventListener('progress', (e) => addStep(e.data));
    source.addEventListener('complete', (e) => {
      const data = JSON.parse(e.data);
      addStep('Done: ' + data.files + ' files in ' + data.outputDir);
      source.close();
      btn.disabled = false;
    });
    source.addEventListener('error', (e) => {
      if (e.data) notify(e.data, 'error');
      source.close();
      btn.disabled = false;
    });
  }
</script>
</body>
</html>
"""


app = create_app()
