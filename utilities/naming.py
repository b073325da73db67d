import shortuuid


def generate_name_with_uuid(name: str) -> str:
    _name = f"{name}-{shortuuid.ShortUUID().random(length=4).lower()}"
    _name = _name.replace("_", "-").replace(".", "-").lower()
    return _name


def local_template_name(template: str, datastore: str) -> str:
    """Name of the per-datastore copy of a template used in local-template mode."""
    return f"{template}-{datastore}"


def linked_clone_snapshot_name(template: str) -> str:
    return f"snapshot-{template}"
