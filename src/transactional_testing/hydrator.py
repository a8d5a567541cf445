from inspect import Parameter
from typing import Any, Dict, List, Type, Union

SCALARS = (str, int, float, bool)


class Hydrator:
    """Object responsible for casting rows from the database to a model"""

    fallback: Type[object] = dict
    """The model type that will be used if there is none passed in the
    hydrate method"""

    def _make(self, model: Type[object]):
        def factory(data: Union[Dict[str, Any], List[Dict[str, Any]]]):
            if model is None:
                return None
            if isinstance(data, list):
                return [self.hydrate(row, model=model) for row in data]
            return self.hydrate(data, model=model)

        return factory

    def hydrate(
        self, data: Dict[str, Any], model: Type[object] = Parameter.empty
    ):
        """Perform casting operation

        Args:
            data (Dict[str, Any]): Raw row from the database
            model (Type[object], optional): The model that will do the
                casting. If no value is passed, it will use whatever the
                Hydrator's fallback value is set to. Defaults to
                `Parameter.empty`.

        Returns:
            Any: The row cast into the model
        """
        if model is Parameter.empty:
            model = self.fallback
        if model in SCALARS:
            return model(next(iter(data.values())))
        if model is dict or getattr(model, "__name__", "") == "Dict":
            return dict(data)
        return model(**data)
