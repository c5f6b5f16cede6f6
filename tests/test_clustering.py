from __future__ import annotations

import allure
import pytest

from chat_enrichment.llm.embeddings import cosine_similarity
from chat_enrichment.pipeline.clustering import cluster_embeddings

pytestmark = [
    allure.epic("Enrichment Pipeline"),
    allure.feature("Semantic Clustering"),
]


def test_connected_components_are_transitive() -> None:
    embeddings = {
        "a": [1.0, 0.0, 0.0],
        "b": [0.95, 0.31, 0.0],
        "c": [0.81, 0.59, 0.0],
        "d": [0.0, 0.0, 1.0],
    }

    clusters = cluster_embeddings(["a", "b", "c", "d", "ghost"], embeddings, threshold=0.94)

    assert [sorted(member.entity_id for member in cluster.members) for cluster in clusters] == [
        ["a", "b", "c"],
        ["d"],
    ]
    assert clusters[0].representative_id == "b"
    assert clusters[1].representative_id == "d"
    assert clusters[0].cluster_id.startswith("cluster:")


def test_cluster_id_is_stable_for_same_members() -> None:
    embeddings = {"x": [1.0, 0.0], "y": [1.0, 0.01]}

    first = cluster_embeddings(["x", "y"], embeddings, threshold=0.9)
    second = cluster_embeddings(["y", "x"], embeddings, threshold=0.9)

    assert first[0].cluster_id == second[0].cluster_id


def test_empty_input() -> None:
    assert cluster_embeddings([], {}, threshold=0.9) == []


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(ValueError, match="same size"):
        cosine_similarity([1.0], [1.0, 2.0])
