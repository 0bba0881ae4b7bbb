"""
Helpers to edit the containers, volumes and env vars of workload templates
"""

# Standard
from typing import Iterator, List, Optional

# Local
from ..resource import ContainerTemplate


def iter_containers(pod_spec: dict, init: bool = False) -> Iterator[dict]:
    yield from pod_spec.get("initContainers" if init else "containers") or []


def find_container(pod_spec: dict, name: str, init: bool = False) -> Optional[dict]:
    for container in iter_containers(pod_spec, init):
        if container.get("name") == name:
            return container
    return None


def remove_container(pod_spec: dict, name: str, init: bool = False) -> bool:
    key = "initContainers" if init else "containers"
    containers = pod_spec.get(key) or []
    kept = [container for container in containers if container.get("name") != name]
    if len(kept) == len(containers):
        return False
    pod_spec[key] = kept
    return True


def add_container(pod_spec: dict, container: dict):
    """Add a container, replacing any existing container of the same name"""
    remove_container(pod_spec, container["name"])
    pod_spec.setdefault("containers", []).append(container)


def remove_volume(pod_spec: dict, name: str, include_init: bool = True):
    """Remove a volume and every mount of it"""
    pod_spec["volumes"] = [
        vol for vol in pod_spec.get("volumes") or [] if vol.get("name") != name
    ]
    groups = [False, True] if include_init else [False]
    for init in groups:
        for container in iter_containers(pod_spec, init):
            container["volumeMounts"] = [
                mount
                for mount in container.get("volumeMounts") or []
                if mount.get("name") != name
            ]


def add_volume(pod_spec: dict, volume: dict):
    """Add a volume, replacing any existing volume of the same name"""
    volumes = [
        vol
        for vol in pod_spec.get("volumes") or []
        if vol.get("name") != volume["name"]
    ]
    volumes.append(volume)
    pod_spec["volumes"] = volumes


def get_env(container: dict, name: str) -> Optional[str]:
    for env in container.get("env") or []:
        if env.get("name") == name:
            return env.get("value")
    return None


def set_env(container: dict, name: str, value: str, add: bool = True):
    """Set the value of an env var. Missing vars are only added if add is set."""
    envs = container.setdefault("env", [])
    for env in envs:
        if env.get("name") == name:
            env.pop("valueFrom", None)
            env["value"] = value
            return
    if add:
        envs.append({"name": name, "value": value})


def replace_envs(container: dict, envs: List[dict], add: bool = False):
    """Replace the values of env vars given in a spec override list"""
    for env in envs:
        if env.get("name"):
            set_env(container, env["name"], str(env.get("value", "")), add=add)


def apply_container_overrides(container: dict, template: ContainerTemplate):
    """Apply the image, pull policy, args and envs of a spec override"""
    if template.image:
        container["image"] = template.image
    if template.image_pull_policy:
        container["imagePullPolicy"] = template.image_pull_policy
    if template.args:
        container["args"] = merge_args(container.get("args") or [], template.args)
    replace_envs(container, template.envs, add=True)


def merge_args(current: List[str], overrides: List[str]) -> List[str]:
    """Merge "--flag=value" style args, replacing flags that are already set"""
    merged = list(current)
    for arg in overrides:
        flag = arg.split("=", 1)[0]
        for idx, existing in enumerate(merged):
            if existing.split("=", 1)[0] == flag:
                merged[idx] = arg
                break
        else:
            merged.append(arg)
    return merged
