"""JSON API for browsing and organizing the volume."""

import json
import logging
from typing import Any, Final

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from server.apps.uploads.runtime import get_storage_root
from server.apps.volume.exceptions import (
    AccessDeniedError,
    EntryExistsError,
    EntryNotFoundError,
    InvalidFolderNameError,
    VolumeError,
)
from server.apps.volume.logic.directory_operations import (
    create_folder,
    delete_entry,
    list_directory,
    move_entry,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: Final = (
    (AccessDeniedError, 403),
    (EntryNotFoundError, 404),
    (InvalidFolderNameError, 400),
    (EntryExistsError, 409),
)


@csrf_exempt
@require_http_methods(['GET', 'DELETE', 'PATCH'])
def files(request: HttpRequest) -> JsonResponse:
    """List a directory, delete an entry or move it.

    Args:
        request: GET or DELETE with a ``path`` query parameter, or PATCH
            with ``sourcePath`` and ``destinationPath`` in a JSON body.

    Returns:
        Listing or ``{"success": true}``, an error object otherwise.
    """
    if request.method == 'GET':
        return _list(request)
    if request.method == 'DELETE':
        return _delete(request)
    return _move(request)


@csrf_exempt
@require_POST
def folders(request: HttpRequest) -> JsonResponse:
    """Create a folder.

    Args:
        request: POST with ``path`` and ``name`` in a JSON body.

    Returns:
        ``{"success": true, "path": ...}``, an error object otherwise.
    """
    body = _json_body(request)
    if body is None:
        return _error('Invalid JSON body', 400)

    parent_path = body.get('path')
    name = body.get('name')
    if not (
        isinstance(parent_path, str)
        and isinstance(name, str)
        and parent_path
        and name
    ):
        return _error('Path and name are required', 400)

    try:
        folder_path = create_folder(get_storage_root(), parent_path, name)
    except VolumeError as error:
        return _volume_error(error)
    except OSError as error:
        logger.exception('Failed to create folder %s in %s', name, parent_path)
        return _error(f'Failed to create folder: {error}', 500)
    return JsonResponse({'success': True, 'path': folder_path})


def _list(request: HttpRequest) -> JsonResponse:
    relative_path = request.GET.get('path') or '/'
    try:
        entries = list_directory(get_storage_root(), relative_path)
    except VolumeError as error:
        return _volume_error(error)
    except OSError as error:
        logger.exception('Failed to read directory %s', relative_path)
        return _error(f'Failed to read directory: {error}', 500)
    return JsonResponse(entries, safe=False)


def _delete(request: HttpRequest) -> JsonResponse:
    relative_path = request.GET.get('path')
    if not relative_path:
        return _error('Path parameter is required', 400)

    try:
        delete_entry(get_storage_root(), relative_path)
    except VolumeError as error:
        return _volume_error(error)
    except OSError as error:
        logger.exception('Failed to delete %s', relative_path)
        return _error(f'Failed to delete: {error}', 500)
    return JsonResponse({'success': True})


def _move(request: HttpRequest) -> JsonResponse:
    body = _json_body(request)
    if body is None:
        return _error('Invalid JSON body', 400)

    source_path = body.get('sourcePath')
    destination_path = body.get('destinationPath')
    if not (
        isinstance(source_path, str)
        and isinstance(destination_path, str)
        and source_path
        and destination_path
    ):
        return _error('Source and destination paths are required', 400)

    try:
        move_entry(get_storage_root(), source_path, destination_path)
    except VolumeError as error:
        return _volume_error(error)
    except OSError as error:
        logger.exception(
            'Failed to move %s to %s',
            source_path,
            destination_path,
        )
        return _error(f'Failed to move: {error}', 500)
    return JsonResponse({'success': True})


def _json_body(request: HttpRequest) -> dict[str, Any] | None:
    try:
        body = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _volume_error(error: VolumeError) -> JsonResponse:
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return _error(str(error), status)
    return _error(str(error), 400)


def _error(message: str, status: int) -> JsonResponse:
    return JsonResponse({'error': message}, status=status)
