"""
Base Repository - Interface comum para todos os repositories.

Define a interface base que todos os repositories devem implementar,
garantindo consistencia e facilitando testes (o cliente de banco e
injetado, entao testes usam um mock sem patches).
"""
from abc import ABC, abstractmethod
from typing import TypeVar, Generic, Optional, Any, Iterable, Iterator, List

from crm.core.exceptions import DatabaseError

# Type variable para entidades
T = TypeVar('T')


def chunked(items: Iterable[Any], size: int) -> Iterator[List[Any]]:
    """Divide um iteravel em listas de ate `size` itens."""
    chunk: List[Any] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class BaseRepository(ABC, Generic[T]):
    """
    Interface base para repositories.

    Attributes:
        db: Cliente de banco de dados (Supabase, Mock, etc.)
        table_name: Nome da tabela no banco de dados

    Example:
        class SegmentRepository(BaseRepository[SegmentData]):
            @property
            def table_name(self) -> str:
                return "segments"

            async def find_by_id(self, id: str) -> Optional[SegmentData]:
                response = self.db.table(self.table_name).select("*").eq("id", id).execute()
                return SegmentData.from_db_row(response.data[0]) if response.data else None
    """

    def __init__(self, db_client: Any):
        """
        Inicializa o repository.

        Args:
            db_client: Cliente de banco de dados (Supabase, Mock, etc.)
        """
        self.db = db_client

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Nome da tabela no banco."""
        pass

    @abstractmethod
    async def find_by_id(self, id: str) -> Optional[T]:
        """
        Busca entidade por ID.

        Args:
            id: UUID da entidade

        Returns:
            Entidade ou None se nao encontrada
        """
        pass

    # Metodos utilitarios (implementacao padrao)

    async def exists(self, id: str) -> bool:
        """Verifica se entidade existe."""
        return await self.find_by_id(id) is not None

    def _execute(self, query, operation: str, **details):
        """
        Executa query do Supabase convertendo erros em DatabaseError.

        Args:
            query: Query builder pronto para .execute()
            operation: Descricao da operacao (para logs/erros)
            **details: Contexto adicional do erro
        """
        try:
            return query.execute()
        except Exception as e:
            raise DatabaseError(
                f"Erro ao {operation} em {self.table_name}",
                details=details or None,
                original_error=e,
            ) from e

    def _empty_response(self, operation: str) -> DatabaseError:
        """Erro para escrita que nao retornou a linha gravada."""
        return DatabaseError(f"Resposta vazia ao {operation} em {self.table_name}")
