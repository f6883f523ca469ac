"""
用户自定义物性公式的沙箱求值器

支持 + - * / ^, 比较运算, and/or/not, 函数 sin cos tan exp log sqrt abs min max,
常量 pi e, 用户变量以及 if(cond, a, b). 公式只经过AST白名单遍历求值,
从不调用 eval, 并对numpy数组逐元素计算.
"""

import ast
import re

import numpy as np

from furnace.errors import FormulaEvaluationError

_FUNCTIONS = {
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "abs": np.abs,
    "min": np.minimum,
    "max": np.maximum,
}

_CONSTANTS = {"pi": np.pi, "e": np.e}

_BINARY_OPS = {
    ast.Add: np.add,
    ast.Sub: np.subtract,
    ast.Mult: np.multiply,
    ast.Div: np.divide,
    ast.Pow: np.power,
}

_COMPARE_OPS = {
    ast.Lt: np.less,
    ast.LtE: np.less_equal,
    ast.Gt: np.greater,
    ast.GtE: np.greater_equal,
    ast.Eq: np.equal,
    ast.NotEq: np.not_equal,
}

_ALLOWED_NODES = (
    ast.Expression, ast.BinOp, ast.UnaryOp, ast.BoolOp, ast.Compare, ast.Call,
    ast.Name, ast.Load, ast.Constant, ast.USub, ast.UAdd, ast.Not, ast.And, ast.Or,
) + tuple(_BINARY_OPS) + tuple(_COMPARE_OPS)

_CONDITIONAL = "_if"


class FormulaEvaluator:
    def __init__(self, expression, variables=None):
        """编译公式

        Args:
            expression: 公式字符串, 例如 "base * (1 + 0.001*T^2)"
            variables: 公式中可用的常量变量 {名称: 数值}

        Raises:
            FormulaEvaluationError: 公式为空, 语法错误或包含不允许的结构
        """
        self.expression = expression
        self.variables = dict(variables or {})
        self._tree = self._parse(expression)

    @staticmethod
    def _parse(expression):
        if not isinstance(expression, str) or not expression.strip():
            raise FormulaEvaluationError("Formula is empty")

        source = expression.replace("^", "**")
        source = re.sub(r"\bif\s*\(", f"{_CONDITIONAL}(", source)
        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as e:
            raise FormulaEvaluationError(f"Cannot parse formula '{expression}': {e.msg}") from e

        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise FormulaEvaluationError(
                    f"Formula '{expression}' uses unsupported syntax: {type(node).__name__}"
                )
            if isinstance(node, ast.Call):
                name = getattr(node.func, "id", None)
                if name != _CONDITIONAL and name not in _FUNCTIONS:
                    raise FormulaEvaluationError(f"Unknown function '{name}' in formula '{expression}'")
                if node.keywords:
                    raise FormulaEvaluationError(f"Keyword arguments are not allowed in formula '{expression}'")
            if isinstance(node, ast.Constant) and not isinstance(node.value, (int, float)):
                raise FormulaEvaluationError(f"Only numeric literals are allowed in formula '{expression}'")
        return tree

    @property
    def names(self):
        """公式中引用的全部变量名 (不含函数和常量)"""
        called = {
            node.func.id for node in ast.walk(self._tree) if isinstance(node, ast.Call)
        }
        return {
            node.id for node in ast.walk(self._tree)
            if isinstance(node, ast.Name) and node.id not in called and node.id not in _CONSTANTS
        }

    def evaluate(self, **values):
        """对给定变量求值, 数组输入逐元素计算

        Returns:
            与输入同形状的浮点数组 (标量输入返回float)

        Raises:
            FormulaEvaluationError: 缺少变量, 参数个数错误或结果非有限
        """
        scope = dict(_CONSTANTS)
        scope.update({k: np.asarray(v, dtype=float) for k, v in self.variables.items()})
        scope.update({k: np.asarray(v, dtype=float) for k, v in values.items()})

        with np.errstate(all="ignore"):
            try:
                result = self._eval(self._tree.body, scope)
            except (TypeError, ValueError, ArithmeticError) as e:
                raise FormulaEvaluationError(f"Failed to evaluate formula '{self.expression}': {e}") from e

        result = np.asarray(result, dtype=float)
        if not np.all(np.isfinite(result)):
            raise FormulaEvaluationError(f"Formula '{self.expression}' produced a non-finite value")
        if result.ndim == 0:
            return float(result)
        return result

    def _eval(self, node, scope):
        if isinstance(node, ast.Constant):
            return np.float64(node.value)

        if isinstance(node, ast.Name):
            if node.id not in scope:
                raise FormulaEvaluationError(f"Unknown variable '{node.id}' in formula '{self.expression}'")
            return scope[node.id]

        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](self._eval(node.left, scope), self._eval(node.right, scope))

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, scope)
            if isinstance(node.op, ast.USub):
                return np.negative(operand)
            if isinstance(node.op, ast.Not):
                return np.logical_not(operand)
            return operand

        if isinstance(node, ast.BoolOp):
            combine = np.logical_and if isinstance(node.op, ast.And) else np.logical_or
            result = self._eval(node.values[0], scope)
            for value in node.values[1:]:
                result = combine(result, self._eval(value, scope))
            return result

        if isinstance(node, ast.Compare):
            # 链式比较 a < b < c
            left = self._eval(node.left, scope)
            result = True
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, scope)
                result = np.logical_and(result, _COMPARE_OPS[type(op)](left, right))
                left = right
            return result

        # ast.Call, 已在解析时检查过函数名
        name = node.func.id
        args = [self._eval(arg, scope) for arg in node.args]
        if name == _CONDITIONAL:
            if len(args) != 3:
                raise FormulaEvaluationError(f"if() expects 3 arguments, got {len(args)}")
            return np.where(args[0], args[1], args[2])
        expected = 2 if name in ("min", "max") else 1
        if len(args) != expected:
            raise FormulaEvaluationError(f"{name}() expects {expected} argument(s), got {len(args)}")
        return _FUNCTIONS[name](*args)


def evaluate_formula(expression, variables=None, **values):
    """一次性编译并求值公式"""
    return FormulaEvaluator(expression, variables).evaluate(**values)
