"""Reconcile desired cluster objects against what the API server holds.

Objects are plain nested dictionaries in the usual manifest layout
(``apiVersion``, ``kind``, ``metadata``, ``spec`` ...).
"""

from __future__ import annotations

import copy
import logging
import random
import time
from typing import Any, Callable, Protocol, TypeVar

log = logging.getLogger(__name__)

DEPLOYMENT_REVISION_ANNOTATION = "deployment.kubernetes.io/revision"

# Read-only metadata fields that the server fills in; copied from the live
# object so that a desired object compares equal to an unchanged one.
_PRESERVED_METADATA = (
    "creationTimestamp",
    "selfLink",
    "generation",
    "uid",
    "resourceVersion",
    "managedFields",
    "finalizers",
)

_RETRY_STEPS = 4
_RETRY_DELAY = 0.01
_RETRY_FACTOR = 5.0
_RETRY_JITTER = 0.1

T = TypeVar("T")


class NotFoundError(LookupError):
    """The requested object does not exist."""


class ConflictError(RuntimeError):
    """The object was modified concurrently; the write may be retried."""


class _ObjectClient(Protocol):
    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict: ...

    def create(self, obj: dict) -> Any: ...

    def update(self, obj: dict) -> Any: ...


def _retry_on_conflict(fn: Callable[[], T]) -> T:
    delay = _RETRY_DELAY
    for attempt in range(1, _RETRY_STEPS + 1):
        try:
            return fn()
        except ConflictError:
            if attempt == _RETRY_STEPS:
                raise
            time.sleep(delay * (1 + random.random() * _RETRY_JITTER))
            delay *= _RETRY_FACTOR
    raise AssertionError("unreachable")


def _group_version_kind(obj: dict) -> tuple[str, str, str]:
    api_version = obj.get("apiVersion") or ""
    group, _, version = api_version.rpartition("/")
    return group, version, obj.get("kind") or ""


def _gvk_string(obj: dict) -> str:
    group, version, kind = _group_version_kind(obj)
    return f"{group}/{version}, Kind={kind}"


def _nested(obj: dict, *fields: str) -> tuple[Any, bool]:
    value: Any = obj
    for depth, field in enumerate(fields):
        if not isinstance(value, dict):
            path = ".".join(fields[:depth])
            raise TypeError(
                f"{path} accessor error: {value!r} is of the type "
                f"{type(value).__name__}, expected map"
            )
        if field not in value:
            return None, False
        value = value[field]
    return value, True


def _nested_string(obj: dict, *fields: str) -> tuple[str, bool]:
    value, found = _nested(obj, *fields)
    if not found:
        return "", False
    if not isinstance(value, str):
        raise TypeError(
            f"{'.'.join(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected string"
        )
    return value, True


def _nested_list(obj: dict, *fields: str) -> tuple[list, bool]:
    value, found = _nested(obj, *fields)
    if not found:
        return [], False
    if not isinstance(value, list):
        raise TypeError(
            f"{'.'.join(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected list"
        )
    return copy.deepcopy(value), True


def _nested_string_list(obj: dict, *fields: str) -> tuple[list[str], bool]:
    value, found = _nested_list(obj, *fields)
    if found and not all(isinstance(item, str) for item in value):
        raise TypeError(f"{'.'.join(fields)} accessor error: contains non-string elements")
    return value, found


def _set_nested(obj: dict, value: Any, *fields: str) -> None:
    target = obj
    for depth, field in enumerate(fields[:-1]):
        if field not in target or target[field] is None:
            target[field] = {}
        elif not isinstance(target[field], dict):
            path = ".".join(fields[: depth + 1])
            raise TypeError(f"value cannot be set because {path} is not a map")
        target = target[field]
    target[fields[-1]] = copy.deepcopy(value)


def _metadata(obj: dict) -> dict:
    meta = obj.get("metadata")
    if not isinstance(meta, dict):
        meta = {}
        obj["metadata"] = meta
    return meta


def _string_map(obj: dict, key: str) -> dict[str, str] | None:
    meta = obj.get("metadata")
    if not isinstance(meta, dict):
        return None
    value = meta.get(key)
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        return None
    return dict(value)


def _is_unset(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, (str, int)) and not isinstance(value, bool) and not value


def _merge_metadata_for_update(current: dict, updated: dict) -> None:
    cur_meta = current.get("metadata") if isinstance(current.get("metadata"), dict) else {}
    for key in _PRESERVED_METADATA:
        value = cur_meta.get(key)
        if _is_unset(value):
            upd_meta = updated.get("metadata")
            if isinstance(upd_meta, dict):
                upd_meta.pop(key, None)
        else:
            _metadata(updated)[key] = copy.deepcopy(value)
    _merge_string_map(current, updated, "annotations")
    _merge_string_map(current, updated, "labels")


def _merge_string_map(current: dict, updated: dict, key: str) -> None:
    """Copy entries of ``key`` from current into updated; updated wins."""
    merged = _string_map(current, key) or {}
    merged.update(_string_map(updated, key) or {})
    if merged:
        _metadata(updated)[key] = merged


def _merge_deployment_for_update(current: dict, updated: dict) -> None:
    group, _, kind = _group_version_kind(updated)
    if group != "apps" or kind != "Deployment":
        return
    annotations = _string_map(updated, "annotations") or {}
    current_annotations = _string_map(current, "annotations") or {}
    if DEPLOYMENT_REVISION_ANNOTATION in current_annotations:
        annotations[DEPLOYMENT_REVISION_ANNOTATION] = current_annotations[
            DEPLOYMENT_REVISION_ANNOTATION
        ]
    _metadata(updated)["annotations"] = annotations


def _merge_service_for_update(current: dict, updated: dict) -> None:
    group, _, kind = _group_version_kind(updated)
    if group != "" or kind != "Service":
        return
    cluster_ip, found = _nested_string(current, "spec", "clusterIP")
    if found:
        _set_nested(updated, cluster_ip, "spec", "clusterIP")
    for field in ("clusterIPs", "ipFamilies"):
        values, found = _nested_string_list(current, "spec", field)
        if found:
            _set_nested(updated, values, "spec", field)
    policy, found_old = _nested_string(current, "spec", "ipFamilyPolicy")
    _, found_new = _nested_string(updated, "spec", "ipFamilyPolicy")
    if found_old and not found_new:
        _set_nested(updated, policy, "spec", "ipFamilyPolicy")


def _merge_service_account_for_update(current: dict, updated: dict) -> None:
    group, _, kind = _group_version_kind(updated)
    if group != "" or kind != "ServiceAccount":
        return
    for field in ("secrets", "imagePullSecrets"):
        values, found = _nested_list(current, field)
        if found:
            _set_nested(updated, values, field)


def merge_object_for_update(current: dict, updated: dict) -> None:
    """Prepare the desired object ``updated`` for an update over ``current``.

    ``updated`` is modified in place.
    """
    _merge_deployment_for_update(current, updated)
    _merge_service_for_update(current, updated)
    _merge_service_account_for_update(current, updated)
    # Metadata last, in case the kind-specific merges changed it.
    _merge_metadata_for_update(current, updated)


def is_object_supported(obj: dict) -> None:
    """Raise ValueError for object configurations that cannot be reconciled."""
    group, _, kind = _group_version_kind(obj)
    if group == "" and kind == "ServiceAccount":
        secrets, found = _nested_list(obj, "secrets")
        if found and secrets:
            raise ValueError("cannot create ServiceAccount with secrets")


def apply_object(client: _ObjectClient, obj: dict) -> None:
    """Create ``obj`` or merge it into the existing object and update it.

    The client offers ``get(api_version, kind, namespace, name)`` raising
    NotFoundError, ``create(obj)`` and ``update(obj)``; the latter two may
    raise ConflictError, in which case the whole step is retried.
    """
    meta = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    name = meta.get("name") or ""
    namespace = meta.get("namespace") or ""
    if not name:
        raise ValueError(f"Object {_gvk_string(obj)} has no name")
    description = f"({_gvk_string(obj)}) {namespace}/{name}"
    log.info("reconciling %s", description)

    try:
        is_object_supported(obj)
    except (ValueError, TypeError) as err:
        raise ValueError(f"object {description} unsupported: {err}") from err

    api_version = obj.get("apiVersion") or ""
    kind = obj.get("kind") or ""

    def attempt() -> None:
        try:
            existing = client.get(api_version, kind, namespace, name)
        except NotFoundError:
            log.info("does not exist, creating %s", description)
            try:
                client.create(obj)
            except Exception:
                log.warning("create of %s was unsuccessful", description)
                raise
            log.info("successfully created %s", description)
            return
        except Exception:
            log.warning("could not retrieve %s", description)
            raise

        try:
            merge_object_for_update(existing, obj)
        except Exception:
            log.warning("could not merge %s with existing", description)
            raise
        if existing != obj:
            try:
                client.update(obj)
            except Exception:
                log.warning("update of %s was unsuccessful", description)
                raise
            log.info("update was successful")

    try:
        _retry_on_conflict(attempt)
    except Exception as err:
        raise RuntimeError(f"ApplyObject of {description} was unsuccessful: {err}") from err