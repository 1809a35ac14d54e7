"""HTTP hooks called by the tus transfer engine.

The engine posts a JSON event before it creates a session and after a
session finished. Only ``pre-create`` and ``post-finish`` are acted on;
every other hook type is acknowledged with an empty object.
"""

import json
import logging
from typing import Any, Final

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from server.apps.uploads.exceptions import (
    DuplicateFileError,
    InvalidUploadMetadataError,
)
from server.apps.uploads.infrastructure.metadata import (
    parse_upload_metadata,
    recommended_total_parts,
)
from server.apps.uploads.logic.guard import ensure_upload_allowed
from server.apps.uploads.runtime import get_runner, get_storage_root

logger = logging.getLogger(__name__)

_PRE_CREATE: Final = 'pre-create'
_POST_FINISH: Final = 'post-finish'
_METADATA_HEADER: Final = 'Upload-Metadata'


@csrf_exempt
@require_POST
def tus_hook(request: HttpRequest) -> JsonResponse:
    """Dispatch one hook event sent by the transfer engine.

    Args:
        request: Hook request with the engine's JSON event as body.

    Returns:
        Hook response understood by the engine.
    """
    try:
        hook = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JsonResponse({'error': 'Invalid hook payload'}, status=400)
    if not isinstance(hook, dict):
        return JsonResponse({'error': 'Invalid hook payload'}, status=400)

    hook_type = hook.get('Type')
    event = hook.get('Event') or {}
    if hook_type == _PRE_CREATE:
        return _pre_create(event)
    if hook_type == _POST_FINISH:
        return _post_finish(event)
    return JsonResponse({})


@require_GET
def part_policy(request: HttpRequest) -> JsonResponse:
    """Tell a client how many parts to split a file of a given size into.

    Args:
        request: Request with a ``size`` query parameter in bytes.

    Returns:
        ``{"totalParts": n}``, or 400 for a missing or invalid size.
    """
    try:
        file_size = int(request.GET.get('size', ''))
    except ValueError:
        file_size = -1
    if file_size < 0:
        return JsonResponse(
            {'error': 'size must be a non-negative integer'},
            status=400,
        )
    return JsonResponse({'totalParts': recommended_total_parts(file_size)})


def _pre_create(event: dict[str, Any]) -> JsonResponse:
    try:
        raw_metadata = _creation_metadata(event)
    except InvalidUploadMetadataError:
        logger.warning('Undecodable metadata in pre-create hook, allowing')
        return JsonResponse({})

    try:
        ensure_upload_allowed(get_storage_root(), raw_metadata)
    except DuplicateFileError as error:
        return JsonResponse(_reject_upload(409, str(error)))
    return JsonResponse({})


def _post_finish(event: dict[str, Any]) -> JsonResponse:
    upload = event.get('Upload') or {}
    session_id = upload.get('ID')
    if not session_id:
        return JsonResponse({'error': 'Upload ID is missing'}, status=400)

    raw_metadata = upload.get('MetaData') or {}
    get_runner().submit_completion(str(session_id), _as_strings(raw_metadata))
    return JsonResponse({})


def _creation_metadata(event: dict[str, Any]) -> dict[str, str]:
    """Get the metadata of a session that is about to be created.

    The engine forwards the client's ``Upload-Metadata`` header as is;
    newer engine versions also decode it into ``Upload.MetaData``.
    """
    headers = (event.get('HTTPRequest') or {}).get('Header') or {}
    header = headers.get(_METADATA_HEADER)
    if isinstance(header, list):
        header = ','.join(header)
    if header:
        return parse_upload_metadata(header)
    return _as_strings((event.get('Upload') or {}).get('MetaData') or {})


def _as_strings(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items()}


def _reject_upload(status_code: int, message: str) -> dict[str, Any]:
    return {
        'RejectUpload': True,
        'HTTPResponse': {
            'StatusCode': status_code,
            'Body': json.dumps({'error': {'message': message}}),
            'Header': {'Content-Type': 'application/json'},
        },
    }
