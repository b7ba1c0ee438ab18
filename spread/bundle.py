import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

import yaml

import spread.scheme
from spread.errors import BundleError
from spread.models import K8sResource

# Convenience.
logit = logging.getLogger("spread")


class Bundle:
    """Ordered collection of resources that make up a deployment.

    The bundle retains the insertion order but also groups the resources by
    `(apiVersion, kind)`, eg to retrieve all Namespaces or Services.

    """

    def __init__(self, objects: Iterable[K8sResource] = ()):
        self._objects: List[K8sResource] = []
        self._groups: Dict[Tuple[str, str], List[K8sResource]] = {}
        self._keys: set = set()

        for obj in objects:
            self.add(obj)

    def __iter__(self) -> Iterator[K8sResource]:
        return iter(list(self._objects))

    def __len__(self) -> int:
        return len(self._objects)

    def add(self, obj: K8sResource) -> None:
        """Append `obj` to the bundle.

        Raise `UnknownKindError` if `obj` is not a supported kind and
        `BundleError` if the bundle already has a resource with the same kind,
        namespace and name.

        """
        desc = spread.scheme.resolve(obj)

        key = (desc.apiVersion, desc.kind, obj.namespace, obj.name)
        if key in self._keys:
            raise BundleError(
                f"duplicate {desc.kind} '{obj.namespace}/{obj.name}' in bundle"
            )
        self._keys.add(key)

        self._objects.append(obj)
        self._groups.setdefault((desc.apiVersion, desc.kind), []).append(obj)

    def objects(self) -> List[K8sResource]:
        return list(self._objects)

    def objects_of(self, apiVersion: str, kind: str) -> List[K8sResource]:
        return list(self._groups.get((apiVersion, kind), []))

    @classmethod
    def from_manifests(cls, manifests: Iterable[dict]) -> "Bundle":
        """Return a bundle with the decoded `manifests`.

        Manifests of kind `List` are flattened into their items.

        """
        bundle = cls()
        for manifest in manifests:
            if manifest.get("kind") == "List":
                for item in manifest.get("items", []):
                    bundle.add(spread.scheme.decode(item))
            else:
                bundle.add(spread.scheme.decode(manifest))
        return bundle


def load_bundle(paths: Sequence[Path]) -> Bundle:
    """Return a `Bundle` with all manifests in the YAML files `paths`."""
    manifests = []
    for path in paths:
        logit.debug("loading manifests", {"path": str(path)})
        for doc in yaml.safe_load_all(Path(path).read_text()):
            # Skip empty documents, eg a trailing `---`.
            if doc:
                manifests.append(doc)
    return Bundle.from_manifests(manifests)
