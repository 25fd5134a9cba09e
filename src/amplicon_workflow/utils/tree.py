# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Iterable, Set, Union

# Third-Party Imports
from skbio import TreeNode
from skbio.io import FileFormatError

# Local Imports
from amplicon_workflow import constants
from amplicon_workflow.errors import FormatError, ParseError, PreconditionError
from amplicon_workflow.utils.qza import is_qza, qza_payload

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.DEFAULT_LOGGER_NAME)

# ==================================== FUNCTIONS ===================================== #

def import_tree(tree_path: Union[str, Path]) -> TreeNode:
    """Load a Newick tree (or a `Phylogeny[Rooted]` artifact).

    Underscores in tip labels are kept as-is so that labels match feature IDs.

    Raises:
        FileNotFoundError: If the file does not exist.
        ParseError:        If the file is not valid Newick.
    """
    tree_path = Path(tree_path)
    if not tree_path.exists():
        raise FileNotFoundError(f"Tree file not found: {tree_path}")
    if is_qza(tree_path):
        with qza_payload(tree_path, 'tree.nwk') as payload:
            return import_tree(payload)

    try:
        tree = TreeNode.read(str(tree_path), format='newick', convert_underscores=False)
    except (FileFormatError, ValueError, TypeError) as e:
        raise ParseError(f"Could not parse Newick tree '{tree_path}': {e}") from e

    names = [tip.name for tip in tree.tips()]
    if any(name is None for name in names):
        raise FormatError(f"Tree '{tree_path}' has unnamed tips")
    if len(set(names)) != len(names):
        raise FormatError(f"Tree '{tree_path}' has duplicate tip names")
    logger.debug(f"{'Loaded tree:':<30}{len(names):>6} tips")
    return tree


def tip_names(tree: TreeNode) -> Set[str]:
    return {tip.name for tip in tree.tips()}


def total_branch_length(tree: TreeNode) -> float:
    """Sum of every defined branch length, root edge included."""
    return float(sum(
        node.length for node in tree.traverse(include_self=True)
        if node.length is not None
    ))


def is_binary(tree: TreeNode) -> bool:
    """True if every internal node, the root included, has exactly two children."""
    return all(len(node.children) == 2 for node in tree.non_tips(include_self=True))


def require_binary(tree: TreeNode, metric: str = "phylogenetic metric") -> None:
    """Raise if `tree` contains multifurcations or unary nodes.

    UniFrac and Faith's PD return wrong values on non-binary trees without any
    warning, so they must be guarded by this check.

    Raises:
        PreconditionError: If the tree is not strictly binary.
    """
    if not is_binary(tree):
        offenders = sum(
            1 for node in tree.non_tips(include_self=True) if len(node.children) != 2
        )
        raise PreconditionError(
            f"{metric} requires a strictly binary tree but {offenders} internal "
            "node(s) do not have exactly two children; call resolve_polytomies() first"
        )


def resolve_polytomies(tree: TreeNode) -> TreeNode:
    """Return a strictly binary copy of `tree`.

    Unary internal nodes are merged into their child (lengths summed) and nodes
    with more than two children are split into nested pairs. Every new internal
    edge has length 0.0 and undefined branch lengths become 0.0, so the leaf set
    and the total branch length are unchanged. The input tree is not modified.
    """
    resolved = tree.copy()

    for node in resolved.traverse(include_self=False):
        if node.length is None:
            node.length = 0.0

    _collapse_unary(resolved)

    inserted = 0
    for node in list(resolved.traverse(include_self=True)):
        while len(node.children) > 2:
            last, second_last = node.children[-1], node.children[-2]
            intermediate = TreeNode(length=0.0)
            # extend() detaches both children from `node`
            intermediate.extend([second_last, last])
            node.append(intermediate)
            inserted += 1

    resolved.clear_caches()
    if inserted:
        logger.debug(f"Resolved polytomies by inserting {inserted} zero-length edges")
    return resolved


def _collapse_unary(tree: TreeNode) -> None:
    """Merge single-child internal nodes into their child, in place."""
    for node in list(tree.postorder(include_self=False)):
        if len(node.children) != 1:
            continue
        child = node.children[0]
        child.length = (child.length or 0.0) + (node.length or 0.0)
        parent = node.parent
        parent.remove(node)
        parent.append(child)

    while len(tree.children) == 1:
        child = tree.children[0]
        if tree.length is not None or child.length is not None:
            tree.length = (tree.length or 0.0) + (child.length or 0.0)
        grandchildren = list(child.children)
        tree.remove(child)
        if not grandchildren:
            # A single-tip tree: the root takes over the tip
            tree.name = child.name
        tree.extend(grandchildren)


def shear_to(tree: TreeNode, names: Iterable[str]) -> TreeNode:
    """Return a copy of `tree` restricted to the tips in `names`.

    Raises:
        FormatError: If a name is not a tip of the tree.
    """
    names = set(names)
    missing = names - tip_names(tree)
    if missing:
        raise FormatError(
            f"{len(missing)} feature(s) are not tips of the tree, "
            f"e.g. {sorted(missing)[:5]}"
        )
    if names == tip_names(tree):
        return tree.copy()
    return tree.shear(names)
