"""Column partitions of Jacobian sparsity and their lookup tables."""

from typing import Dict, List, Tuple

from cujac.model.symbolic_model import Sparsity

Partition = Dict[int, List[int]]


def partition_sparsity(sparsity: Sparsity) -> Partition:
    """Group the rows of a sparsity pattern by column.

    Parameters
    ----------
    sparsity
        Nonzero entries as parallel row and column tuples.

    Returns
    -------
    dict[int, list[int]]
        Mapping from column to the rows with a nonzero entry in that column,
        in the order they are enumerated in ``sparsity``. Columns without
        entries are absent. Keys are in ascending order.
    """
    partition: Partition = {}
    for row, col in zip(sparsity.rows, sparsity.cols):
        partition.setdefault(col, []).append(row)
    return {col: partition[col] for col in sorted(partition)}


def flatten_partition(partition: Partition) -> List[Tuple[int, int]]:
    """Return the ``(row, col)`` pairs of a partition, column by column."""
    return [(row, col) for col in sorted(partition)
            for row in partition[col]]


def max_column_size(partition: Partition) -> int:
    """Return the largest number of rows in any column (0 when empty)."""
    return max((len(rows) for rows in partition.values()), default=0)


def sparsity_lookup_source(function: str, partition: Partition) -> str:
    """Emit a device function returning the rows of a column.

    The generated function has the signature
    ``void function(unsigned long pos, unsigned long const **elements,
    unsigned long *nnz)``. For a column in ``partition`` it points
    ``elements`` at the row indices of that column and sets ``nnz`` to
    their count; any other position yields a null pointer and a count of
    zero.
    """
    tables = []
    cases = []
    for col in sorted(partition):
        rows = partition[col]
        values = ", ".join(str(row) for row in rows)
        tables.append(
            f"__device__ const unsigned long {function}_elements{col}"
            f"[{len(rows)}] = {{{values}}};\n"
        )
        cases.append(
            f"    case {col}:\n"
            f"      *elements = {function}_elements{col};\n"
            f"      *nnz = {len(rows)};\n"
            f"      break;\n"
        )

    title = f"__device__ void {function}("
    pad = " " * len(title)
    return (
        "".join(tables)
        + "\n"
        + f"{title}unsigned long pos,\n"
        + f"{pad}unsigned long const **elements,\n"
        + f"{pad}unsigned long *nnz) {{\n"
        + "  switch (pos) {\n"
        + "".join(cases)
        + "    default:\n"
        + "      *elements = 0;\n"
        + "      *nnz = 0;\n"
        + "      break;\n"
        + "  }\n"
        + "}\n"
    )
