"""
Module parameter binding.

Turns a module's declared parameters, the selected dataset and the raw form
values into the ordered ``ResolvedParameters`` a backend client submits.
Binding is pure: neither the module nor the dataset is mutated, and nothing
touches the network.
"""

import posixpath
from typing import Any, Dict, List, Mapping, Optional

from flowgate.core.exceptions import MissingDatasetError, ParameterValidationError
from flowgate.core.schemas.catalog import Dataset, Module, ModuleParam, ParamType
from flowgate.core.schemas.parameters import (
    GeneratedFile,
    ResolvedParameter,
    ResolvedParameters,
)
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

METADATA_FILE_NAME = "metadata.txt"


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v) != ""]
    value = str(value)
    return [value] if value != "" else []


def _is_hidden(path: str) -> bool:
    return posixpath.basename(path.replace("\\", "/")).startswith(".")


def build_metadata_table(dataset: Dataset, separator: str = "\t") -> str:
    """
    Render the annotation table of a dataset.

    The header is the union of the files' metadata keys in first-seen order;
    each file contributes one row, with empty cells for keys it lacks.
    """
    header: List[str] = []
    for exp_file in dataset.files:
        for key in exp_file.metadata:
            if key not in header:
                header.append(key)

    lines = [separator.join(header)]
    for exp_file in dataset.files:
        lines.append(separator.join(exp_file.metadata.get(k, "") for k in header))
    return "\n".join(lines) + "\n"


class ModuleParameterBinder:
    """Maps module parameters to concrete submission values."""

    def bind(
        self,
        module: Module,
        dataset: Optional[Dataset],
        raw_form_values: Optional[Mapping[str, Any]] = None,
    ) -> ResolvedParameters:
        """
        Resolve every declared parameter of ``module``.

        Args:
            module: Module being submitted
            dataset: Dataset selected by the user, if any
            raw_form_values: Form values keyed by param key or ``mp-<param id>``

        Returns:
            ResolvedParameters: One entry per bound parameter, in declaration order

        Raises:
            MissingDatasetError: A required dataset parameter has nothing to bind
            ParameterValidationError: Any other required parameter is missing
        """
        form = raw_form_values or {}
        field_errors: Dict[str, str] = {}
        missing_dataset = False
        resolved: List[ResolvedParameter] = []

        for index, param in enumerate(module.params):
            order = param.order if param.order is not None else index
            raw = self._lookup(form, param)

            if param.type == ParamType.DATASET:
                if param.is_required and (dataset is None or not dataset.files):
                    field_errors[param.key] = "A non-empty dataset is required"
                    missing_dataset = True
                    continue
                if dataset is None:
                    continue
                resolved.append(
                    ResolvedParameter(
                        key=param.key,
                        type=param.type,
                        values=[f.path for f in dataset.files],
                        order=order,
                    )
                )

            elif param.type in (ParamType.FILE, ParamType.DIR):
                values = [v for v in _as_list(raw) if not _is_hidden(v)]
                if param.type == ParamType.FILE:
                    values = values[:1]
                if not values:
                    if param.is_required:
                        field_errors[param.key] = "A file is required"
                    continue
                resolved.append(
                    ResolvedParameter(
                        key=param.key, type=param.type, values=values, order=order
                    )
                )

            elif param.type == ParamType.META:
                if dataset is None or not dataset.files:
                    if param.is_required:
                        field_errors[param.key] = "A dataset with metadata is required"
                        missing_dataset = True
                    continue
                name = param.default or METADATA_FILE_NAME
                resolved.append(
                    ResolvedParameter(
                        key=param.key,
                        type=param.type,
                        values=[name],
                        order=order,
                        generated=GeneratedFile(
                            name=name, content=build_metadata_table(dataset)
                        ),
                    )
                )

            else:
                values = _as_list(raw)[:1]
                if not values and param.default is not None:
                    values = [param.default]
                if not values:
                    if param.is_required:
                        field_errors[param.key] = "A value is required"
                    continue
                resolved.append(
                    ResolvedParameter(
                        key=param.key, type=param.type, values=values, order=order
                    )
                )

        if field_errors:
            error_cls = MissingDatasetError if missing_dataset else ParameterValidationError
            logger.info(
                f"Parameter binding failed for module '{module.name}': "
                f"{sorted(field_errors)}"
            )
            raise error_cls(
                f"Invalid parameters for module '{module.name}'",
                field_errors=field_errors,
                details={"module_id": module.id},
            )

        return ResolvedParameters(
            items=resolved,
            experiment_id=dataset.experiment_id if dataset is not None else None,
        )

    @staticmethod
    def _lookup(form: Mapping[str, Any], param: ModuleParam) -> Any:
        if param.key in form:
            return form[param.key]
        return form.get(param.form_name)
