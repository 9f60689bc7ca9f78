import torch 


class ShapeMismatch(ValueError):
    def __init__(self, name, shape, expected_shape):
        self.name = name
        self.shape = shape
        self.expected_shape = expected_shape
        super().__init__(f"{name} has shape {shape} expected {expected_shape}")


def check_coo(val:torch.Tensor,
              row:torch.Tensor, 
              col:torch.Tensor,
              shape:tuple
              ):
    """
    Check the COO format

    Parameters
    ----------

    val: torch.Tensor
        [nnz] values of the sparse matrix
    row: torch.Tensor
        [nnz] row indices of the sparse matrix
    col: torch.Tensor
        [nnz] column indices of the sparse matrix
    shape: tuple
        (m,n) shape of the sparse matrix

    """
    if not row.ndim == 1:
        raise ShapeMismatch("row", tuple(row.shape), "[nnz]")
    if not col.ndim == 1:
        raise ShapeMismatch("col", tuple(col.shape), "[nnz]")
    if not val.ndim == 1:
        raise ShapeMismatch("val", tuple(val.shape), "[nnz]")
    if not val.shape[0] == row.shape[0]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{row.shape[0]}]")
    if not val.shape[0] == col.shape[0]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{col.shape[0]}]")
    if not (shape[0] > 0 and shape[1] > 0):
        raise ShapeMismatch("shape", shape, "(m,n)")

def check_csr(val:torch.Tensor,
              rowptr:torch.Tensor,
              col:torch.Tensor,
              shape:tuple):
    """
    Check the CSR format

    Parameters
    ----------
    val: torch.Tensor
        [nnz] values of the sparse matrix
    rowptr: torch.Tensor
        [m+1] rowptr of the sparse matrix
    col: torch.Tensor
        [nnz] column indices of the sparse matrix
    shape: tuple
        (m,n) shape of the sparse matrix
    """
    m, n = shape
    if not (rowptr.ndim == 1 and rowptr.shape[0] == m+1):
        raise ShapeMismatch("rowptr", tuple(rowptr.shape), f"[{m+1}]")
    if not col.ndim == 1:
        raise ShapeMismatch("col", tuple(col.shape), "[nnz]")
    if not val.shape[0] == rowptr[-1]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{int(rowptr[-1])}]")
    if not val.shape[0] == col.shape[0]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{col.shape[0]}]")
    if not (m > 0 and n > 0):
        raise ShapeMismatch("shape", shape, "(m,n)")

def check_csc(val:torch.Tensor, 
              row:torch.Tensor, 
              colptr:torch.Tensor, 
              shape:tuple):
    """
    Check the CSC format

    Parameters
    ----------
    val: torch.Tensor
        [nnz] values of the sparse matrix
    row: torch.Tensor
        [nnz] row indices of the sparse matrix
    colptr: torch.Tensor
        [n+1] colptr of the sparse matrix
    shape: tuple
        (m,n) shape of the sparse matrix
    """
    m, n = shape
    if not row.ndim == 1:
        raise ShapeMismatch("row", tuple(row.shape), "[nnz]")
    if not (colptr.ndim == 1 and colptr.shape[0] == n+1):
        raise ShapeMismatch("colptr", tuple(colptr.shape), f"[{n+1}]")
    if not val.shape[0] == colptr[-1]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{int(colptr[-1])}]")
    if not val.shape[0] == row.shape[0]:
        raise ShapeMismatch("val", tuple(val.shape), f"[{row.shape[0]}]")
    if not (m > 0 and n > 0):
        raise ShapeMismatch("shape", shape, "(m,n)")

def check_system(shape:tuple,
                 b:torch.Tensor,
                 x0:torch.Tensor=None):
    """
    Check that the right-hand side and the initial guess fit a square operator

    Parameters
    ----------
    shape: tuple
        (n,n) shape of the operator
    b: torch.Tensor
        [n] right-hand side
    x0: torch.Tensor, optional
        [n] initial guess
    """
    m, n = shape
    if not m == n:
        raise ShapeMismatch("A", shape, f"({m},{m})")
    if not (b.ndim == 1 and b.shape[0] == m):
        raise ShapeMismatch("b", tuple(b.shape), f"[{m}]")
    if x0 is not None and not (x0.ndim == 1 and x0.shape[0] == n):
        raise ShapeMismatch("x0", tuple(x0.shape), f"[{n}]")
