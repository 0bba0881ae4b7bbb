"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timedelta
from functools import partial
from queue import Empty, Queue
from threading import Event, RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import operator
import random
import uuid

# First Party
import alog

# Local
from ..managed_object import ManagedObject
from ..utils import merge_configs
from .base import DeployManagerBase, DeployMethod
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields owned by the server which never count as a change
SERVER_METADATA_FIELDS = [
    "creationTimestamp",
    "generation",
    "managedFields",
    "resourceVersion",
    "uid",
]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources=None,
        strict_resource_version=False,
        generate_resource_version=True,
    ):
        """Construct with an optional set of resources that are already present
        in the cluster
        """
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version
        self.generate_resource_version = generate_resource_version

        # Dicts of registered watches and watchers
        self._watches = {}
        self._finalizers = {}

        # Deploy provided resources
        self._deploy(resources or [], call_watches=False)

    ## Interface ###############################################################

    def deploy(
        self,
        resource_definitions,
        method: DeployMethod = DeployMethod.DEFAULT,
        **_,
    ):
        log.info("DRY RUN deploy")
        return self._deploy(resource_definitions, method=method)

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")
            _, content = self.get_object_current_state(
                kind=kind, api_version=api_version, namespace=namespace, name=name
            )
            if content is None:
                continue
            changed = True
            api_version = content["apiVersion"]

            # Mark the object as deleting
            with DRY_RUN_CLUSTER_LOCK:
                metadata = self._cluster_content[namespace][kind][api_version][name][
                    "metadata"
                ]
                metadata.setdefault(
                    "deletionTimestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")
                )
                metadata["deletionGracePeriodSeconds"] = 0

            # Call any registered finalizers
            for key, callback in self._get_registered_watches(
                api_version, kind, namespace, name, finalizer=True
            ):
                log.debug2("Calling registered finalizer [%s] for [%s]", callback, key)
                callback(self._cluster_content[namespace][kind][api_version][name])

            # If finalizers have been cleared and object hasn't already been
            # deleted then remove the key
            with DRY_RUN_CLUSTER_LOCK:
                current_obj = self._get_entry(namespace, kind, api_version, name)
                if current_obj and not current_obj.get("metadata", {}).get(
                    "finalizers", []
                ):
                    self._delete_key(namespace, kind, api_version, name)

        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )

        # Look in the cluster state
        matches = []
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        for api_ver, entries in kind_entries.items():
            log.debug4("Checking api_version [%s // %s]", api_ver, api_version)
            if name in entries and (api_ver == api_version or api_version is None):
                matches.append(entries[name])
        log.debug2(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        # Look in the cluster state. No namespace means all namespaces.
        matches = []
        namespaces = (
            [namespace] if namespace is not None else list(self._cluster_content)
        )
        for ns_name in namespaces:
            kind_entries = self._cluster_content.get(ns_name, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                # Make sure api version matches
                if api_ver != api_version and api_version is not None:
                    continue

                for resource in entries.values():
                    labels = resource.get("metadata", {}).get("labels", {})
                    log.debug4(
                        "Checking label_selector [%s // %s]", labels, label_selector
                    )
                    if label_selector is not None and not _match_selector(
                        labels, label_selector
                    ):
                        continue

                    # Only do the work for field selector if one exists
                    if field_selector is not None and not _match_selector(
                        _convert_dict_to_dot(resource),
                        field_selector,
                    ):
                        continue

                    # Add deep copy of entry to matches list
                    matches.append(copy.deepcopy(resource))

        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        object_content = self.get_object_current_state(
            kind, name, namespace, api_version
        )[1]
        if object_content is None:
            log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
            return False, False
        prev_status = object_content.get("status")
        if prev_status == status:
            return True, False
        object_content["status"] = status
        self._deploy([object_content], write_status=True)
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        stop_event: Optional[Event] = None,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks"""

        event_queue = Queue()
        resource_map = {}

        def add_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are deployed"""
            resource = ManagedObject(copy.deepcopy(manifest))
            event_type = KubeEventType.ADDED

            watch_key = self._watch_key(
                api_version=resource.api_version,
                kind=resource.kind,
                namespace=resource.namespace,
                name=resource.name,
            )
            if watch_key in resource_map:
                log.debug4("Watch key detected, setting Modified event type")
                event_type = KubeEventType.MODIFIED

            resource_map[watch_key] = resource
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(resource_map: dict, manifest: dict):
            """Callback triggered when resources are disabled"""
            resource = ManagedObject(copy.deepcopy(manifest))
            watch_key = self._watch_key(
                api_version=resource.api_version,
                kind=resource.kind,
                namespace=resource.namespace,
                name=resource.name,
            )
            resource_map.pop(watch_key, None)
            event_queue.put(
                KubeWatchEvent(type=KubeEventType.DELETED, resource=resource)
            )

        # Register callbacks before listing so that nothing is missed
        watch_callback = partial(add_event, resource_map)
        finalizer_callback = partial(delete_event, resource_map)
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=watch_callback,
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=finalizer_callback,
        )
        try:
            yield from self._watch_events(
                event_queue,
                resource_map,
                kind=kind,
                api_version=api_version,
                namespace=namespace,
                name=name,
                label_selector=label_selector,
                field_selector=field_selector,
                timeout=timeout,
                stop_event=stop_event,
            )
        finally:
            self.unregister_callback(watch_callback)
            self.unregister_callback(finalizer_callback)

    def _watch_events(  # pylint: disable=too-many-arguments
        self,
        event_queue: Queue,
        resource_map: dict,
        kind: str,
        api_version: Optional[str],
        namespace: Optional[str],
        name: Optional[str],
        label_selector: Optional[str],
        field_selector: Optional[str],
        timeout: Optional[int],
        stop_event: Optional[Event],
    ) -> Iterator[KubeWatchEvent]:
        """Yield the initial objects followed by queued callback events"""

        # Get initial resources
        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            resource = ManagedObject(manifest)
            if name and resource.name != name:
                continue
            watch_key = self._watch_key(
                kind=resource.kind,
                api_version=resource.api_version,
                name=resource.name,
                namespace=resource.namespace,
            )
            resource_map[watch_key] = resource

            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
            log.debug2("Yielding initial event %s", event)
            yield event

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        # Yield any events from the callback queue
        log.debug2("Waiting till %s", end_time)
        while True:
            sec_till_end = (end_time - datetime.now()).seconds or 1
            try:
                event = event_queue.get(timeout=min(sec_till_end, 1))
                log.debug2("Yielding event %s", event)
                yield event
            except Empty:
                pass

            if datetime.now() > end_time or (
                stop_event is not None and stop_event.is_set()
            ):
                return

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for deploy events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call on deletion events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering finalizer for %s", watch_key)
        self._finalizers.setdefault(watch_key, []).append(callback)

    def unregister_callback(self, callback: Callable[[dict], None]):
        """Remove a callback registered as a watch or finalizer"""
        for callback_map in [self._watches, self._finalizers]:
            for key, callbacks in list(callback_map.items()):
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    del callback_map[key]

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        # A watch may be registered with or without the api_version, and
        # scoped to the resource, its namespace or the whole cluster
        candidate_keys = []
        for api_ver in [api_version, ""]:
            candidate_keys.extend(
                [
                    self._watch_key(
                        api_version=api_ver, kind=kind, namespace=namespace, name=name
                    ),
                    self._watch_key(
                        api_version=api_ver, kind=kind, namespace=namespace
                    ),
                    self._watch_key(api_version=api_ver, kind=kind),
                ]
            )

        # Get which watch list we're pulling from
        callback_map = self._finalizers if finalizer else self._watches

        output_list = []
        for key, callback_list in list(callback_map.items()):
            if key in candidate_keys:
                log.debug3("%d Callbacks found for key %s", len(callback_list), key)
                for callback in callback_list:
                    output_list.append((key, callback))

        return output_list

    def _get_entry(self, namespace, kind, api_version, name) -> Optional[dict]:
        return (
            self._cluster_content.get(namespace, {})
            .get(kind, {})
            .get(api_version, {})
            .get(name)
        )

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _deploy(  # pylint: disable=too-many-locals
        self,
        resource_definitions,
        call_watches=True,
        method: DeployMethod = DeployMethod.DEFAULT,
        write_status=False,
    ):
        changes = False
        for definition in resource_definitions:
            resource = copy.deepcopy(definition)
            resource.setdefault("metadata", {})
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource["metadata"].get("name")
            namespace = resource["metadata"].get("namespace")
            log.debug(
                "DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name
            )
            log.debug4(resource)

            with DRY_RUN_CLUSTER_LOCK:
                entries = (
                    self._cluster_content.setdefault(namespace, {})
                    .setdefault(kind, {})
                    .setdefault(api_version, {})
                )
                current = copy.deepcopy(entries.get(name))
                current_metadata = (current or {}).get("metadata", {})
                old_resource_version = current_metadata.get("resourceVersion")

                if (
                    self.strict_resource_version
                    and resource["metadata"].get("resourceVersion")
                    and old_resource_version
                    and resource["metadata"].get("resourceVersion")
                    != old_resource_version
                ):
                    log.warning(
                        "Unable to deploy resource. resourceVersion is out of date"
                    )
                    return False, False

                # Depending on the deploy method either update or fully replace
                # the object
                if method == DeployMethod.UPDATE and current is not None:
                    updated = merge_configs(copy.deepcopy(current), resource)
                else:
                    updated = resource

                # Status is only written through set_status
                if (
                    not write_status
                    and "status" in (current or {})
                    and method == DeployMethod.DEFAULT
                ):
                    updated["status"] = current["status"]

                # Server owned metadata is carried over from the current object
                updated_metadata = updated["metadata"]
                updated_metadata["creationTimestamp"] = current_metadata.get(
                    "creationTimestamp", datetime.now().isoformat()
                )
                updated_metadata["uid"] = current_metadata.get("uid", str(uuid.uuid4()))
                for field in ["deletionTimestamp", "deletionGracePeriodSeconds"]:
                    if field in current_metadata:
                        updated_metadata[field] = current_metadata[field]

                resource_changed = current is None or _comparable(
                    current
                ) != _comparable(updated)
                changes = changes or resource_changed

                generation = current_metadata.get("generation", 0)
                if current is None or (current or {}).get("spec") != updated.get(
                    "spec"
                ):
                    generation += 1
                updated_metadata["generation"] = generation

                if not resource_changed and old_resource_version:
                    updated_metadata["resourceVersion"] = old_resource_version
                elif self.generate_resource_version:
                    updated_metadata["resourceVersion"] = str(
                        random.randint(1, 1000)
                    ).zfill(5)

                entries[name] = updated

            # Call any registered watches
            if call_watches and resource_changed:
                for key, callback in self._get_registered_watches(
                    api_version, kind, namespace, name
                ):
                    log.debug2("Calling registered watch [%s] for [%s]", callback, key)
                    callback(copy.deepcopy(updated))

            # Delete Key if it has already been disabled and doesn't have
            # finalizers
            with DRY_RUN_CLUSTER_LOCK:
                stored = self._get_entry(namespace, kind, api_version, name)
                if (
                    stored
                    and stored["metadata"].get("deletionTimestamp")
                    and not stored["metadata"].get("finalizers")
                ):
                    self._delete_key(namespace, kind, api_version, name)

        return True, changes


def _comparable(resource: dict) -> dict:
    """Copy of a resource without the fields the server owns"""
    resource = copy.deepcopy(resource)
    metadata = resource.get("metadata", {})
    for field in SERVER_METADATA_FIELDS:
        metadata.pop(field, None)
    return resource


def _match_selector(values, value_selector) -> bool:  # pylint: disable=too-many-locals
    """This function implements the kubernetes selector to determine if
    a set of values matches the selector. For the complete documentation regarding
    selectors see:
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#syntax-and-character-set
    """
    log.debug4("DRY RUN match_selector [%s/%s]", values, value_selector)

    # Configure List of Operators used in splitting
    equality_ops = ["=", "==", "!="]
    # The spaces distinguish set operators from characters in the key
    set_ops = [" in ", " notin "]
    existence_ops = ["!", ""]

    def _in(a, b):  # pylint: disable=invalid-name
        return a in b

    def not_in(a, b):  # pylint: disable=invalid-name
        return not _in(a, b)

    def exists(a, _):  # pylint: disable=invalid-name
        return a is not None

    def not_exists(a, _):  # pylint: disable=invalid-name
        return a is None

    operator_actions = {
        "=": operator.eq,
        "==": operator.eq,
        "!=": operator.ne,
        " in ": _in,
        " notin ": not_in,
        "!": not_exists,
        "": exists,
    }

    # Longest operators first so that != is tried before =
    operator_list = sorted(operator_actions.keys(), key=len, reverse=True)

    for selector in _split_selectors(value_selector):
        action = None
        expected_key = None
        expected_value = None

        for op in operator_list:  # pylint: disable=invalid-name
            # Either split the selector or remove the NonExistence operator
            if op in existence_ops:
                split_selector = [selector.replace(op, "")]
            else:
                split_selector = selector.split(op)

            if (op in equality_ops or op in set_ops) and len(split_selector) != 2:
                continue
            if (op == "!") and "!" not in selector:
                continue

            action = operator_actions[op]
            expected_key = split_selector[0].strip()

            if op in equality_ops:
                expected_value = split_selector[1].strip()
            elif op in set_ops:
                string_value = split_selector[1].replace("(", "").replace(")", "")
                expected_value = [val.strip() for val in string_value.split(",")]
            break

        value = values.get(expected_key)
        value = str(value).strip() if value is not None else value

        if not action(value, expected_value):
            log.debug4(
                "Label with key: %s and value: %s does not match selector %s",
                expected_key,
                value,
                selector,
            )
            return False

    return True


def _split_selectors(selector=""):
    """Split up selectors by , but ignoring those surrounded by () e.g.
    'app,app in (frontend, backend)' becomes ['app','app in (frontend, backend)']
    """
    output_list = []
    current_selector = ""
    in_paren = False

    for char in selector:
        if char == "," and not in_paren:
            output_list.append(current_selector)
            current_selector = ""
            continue

        if char == "(" and not in_paren:
            in_paren = True
        elif char == ")" and in_paren:
            in_paren = False

        current_selector += char

    if current_selector:
        output_list.append(current_selector)

    return output_list


def _convert_dict_to_dot(dictionary, prefix=""):
    """Helper function to convert a dictionary to a map
    of strings dotted together. For example {a:{b:1},c:2}
    becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}

    output_dict = {}
    for key in dictionary:
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict = {**output_dict, **_convert_dict_to_dot(dictionary[key], new_key)}
    return output_dict
