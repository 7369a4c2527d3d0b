from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Set, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from sklearn.metrics.pairwise import cosine_similarity


@dataclass(frozen=True)
class EntityIndex:
    """Mapping between entity/feature ids and row/column positions in the matrix."""

    entity_to_row: Dict[int, int]
    row_to_entity: List[int]
    feature_to_col: Dict[int, int]
    col_to_feature: List[int]


def build_binary_matrix(
    sets: Mapping[int, Set[int]],
    *,
    extra_features: Iterable[int] = (),
) -> Tuple[csr_matrix, EntityIndex]:
    """
    Binary entity x feature matrix: users x items for user similarity,
    items x users for item similarity.

    `extra_features` are added as columns even if no row uses them, so a
    target vector built on the same index keeps its full size.
    """
    entity_ids = sorted(sets)
    feature_ids = sorted(set().union(*sets.values(), extra_features)) if sets else sorted(set(extra_features))

    entity_to_row = {eid: i for i, eid in enumerate(entity_ids)}
    feature_to_col = {fid: j for j, fid in enumerate(feature_ids)}

    rows: List[int] = []
    cols: List[int] = []
    for eid in entity_ids:
        r = entity_to_row[eid]
        for fid in sets[eid]:
            rows.append(r)
            cols.append(feature_to_col[fid])

    M = csr_matrix(
        (np.ones(len(rows), dtype=np.float64), (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64))),
        shape=(len(entity_ids), len(feature_ids)),
    )
    index = EntityIndex(
        entity_to_row=entity_to_row,
        row_to_entity=entity_ids,
        feature_to_col=feature_to_col,
        col_to_feature=feature_ids,
    )
    return M, index


def _target_vector(target: Set[int], index: EntityIndex) -> csr_matrix:
    cols = np.array(sorted(index.feature_to_col[f] for f in target), dtype=np.int64)
    data = np.ones(len(cols), dtype=np.float64)
    rows = np.zeros(len(cols), dtype=np.int64)
    return csr_matrix((data, (rows, cols)), shape=(1, len(index.col_to_feature)))


def jaccard_against(target: Set[int], candidates: Mapping[int, Set[int]]) -> Dict[int, float]:
    """
    |T ∩ C| / |T ∪ C| for every candidate C, in one sparse product.
    Same values as `similarity.jaccard_similarity` applied pairwise.
    """
    if not candidates:
        return {}
    if not target:
        return {cid: 0.0 for cid in candidates}

    M, index = build_binary_matrix(candidates, extra_features=target)
    t = _target_vector(target, index)

    inter = np.asarray((M @ t.T).todense()).ravel()
    sizes = np.asarray(M.getnnz(axis=1), dtype=np.float64)
    union = sizes + float(len(target)) - inter
    scores = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
    scores = np.clip(scores, 0.0, 1.0)

    return {index.row_to_entity[row]: float(scores[row]) for row in range(M.shape[0])}


def overlap_cosine_against(target: Set[int], candidates: Mapping[int, Set[int]]) -> Dict[int, float]:
    """
    |T ∩ C| / sqrt(|T| * |C|) for every candidate C: cosine similarity of
    binary vectors, computed with scikit-learn on the sparse matrix.
    """
    if not candidates:
        return {}
    if not target:
        return {cid: 0.0 for cid in candidates}

    M, index = build_binary_matrix(candidates, extra_features=target)
    t = _target_vector(target, index)

    # zero rows (candidates without interactions) come back as 0
    sim = cosine_similarity(M, t, dense_output=True).ravel()
    sim = np.clip(sim, 0.0, 1.0)

    return {index.row_to_entity[row]: float(sim[row]) for row in range(M.shape[0])}
