"""Similarity clustering over stored message embeddings."""

from __future__ import annotations

import hashlib
from collections import defaultdict, deque
from dataclasses import dataclass

from chat_enrichment.llm.embeddings import Vector, cosine_similarity


@dataclass(slots=True)
class ClusterMember:
    entity_id: str
    similarity_to_representative: float
    is_representative: bool


@dataclass(slots=True)
class SemanticCluster:
    cluster_id: str
    representative_id: str
    members: list[ClusterMember]


def cluster_embeddings(
    entity_ids: list[str],
    embeddings: dict[str, Vector],
    threshold: float,
) -> list[SemanticCluster]:
    """Group entities into connected components of pairwise similarity >= threshold.

    Entities without an embedding are ignored.
    """

    ordered = [entity_id for entity_id in dict.fromkeys(entity_ids) if entity_id in embeddings]
    if not ordered:
        return []

    adjacency = _build_adjacency(ordered, embeddings, threshold)
    visited: set[str] = set()
    clusters: list[SemanticCluster] = []
    for entity_id in ordered:
        if entity_id in visited:
            continue
        component = _collect_component(entity_id, adjacency, visited)
        clusters.append(_build_cluster(component, embeddings))
    return clusters


def _build_adjacency(
    entity_ids: list[str],
    embeddings: dict[str, Vector],
    threshold: float,
) -> dict[str, set[str]]:
    adjacency: dict[str, set[str]] = defaultdict(set)
    for index, left in enumerate(entity_ids):
        left_vec = embeddings[left]
        for right in entity_ids[index + 1 :]:
            if cosine_similarity(left_vec, embeddings[right]) >= threshold:
                adjacency[left].add(right)
                adjacency[right].add(left)
    return adjacency


def _collect_component(
    start_id: str,
    adjacency: dict[str, set[str]],
    visited: set[str],
) -> list[str]:
    queue: deque[str] = deque([start_id])
    component: list[str] = []

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        component.append(current)
        for neighbor in adjacency.get(current, set()):
            if neighbor not in visited:
                queue.append(neighbor)

    return component


def _build_cluster(entity_ids: list[str], embeddings: dict[str, Vector]) -> SemanticCluster:
    representative = _choose_representative(entity_ids, embeddings)
    representative_vec = embeddings[representative]
    members = [
        ClusterMember(
            entity_id=entity_id,
            similarity_to_representative=cosine_similarity(
                representative_vec,
                embeddings[entity_id],
            ),
            is_representative=entity_id == representative,
        )
        for entity_id in sorted(entity_ids)
    ]
    return SemanticCluster(
        cluster_id=_build_cluster_id(entity_ids),
        representative_id=representative,
        members=members,
    )


def _choose_representative(entity_ids: list[str], embeddings: dict[str, Vector]) -> str:
    """Member with the highest total similarity to the rest (medoid)."""

    if len(entity_ids) <= 2:  # noqa: PLR2004
        return sorted(entity_ids)[0]
    scores = {
        entity_id: sum(
            cosine_similarity(embeddings[entity_id], embeddings[other])
            for other in entity_ids
            if other != entity_id
        )
        for entity_id in entity_ids
    }
    return sorted(entity_ids, key=lambda item: (-scores[item], item))[0]


def _build_cluster_id(entity_ids: list[str]) -> str:
    joined = "|".join(sorted(entity_ids))
    digest = hashlib.sha1(joined.encode("utf-8"), usedforsecurity=False).hexdigest()  # noqa: S324
    return f"cluster:{digest}"
