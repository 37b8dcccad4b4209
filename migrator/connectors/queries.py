"""GraphQL documents for the Pocket source and the Omnivore destination."""

ITEM_DETAILS_FRAGMENT = """
fragment ItemDetails on Item {
  isArticle
  title
  itemId
  resolvedUrl
  domain
  excerpt
  topImageUrl
  timeToRead
  givenUrl
  authors {
    id
    name
    url
  }
  datePublished
}
"""

LIST_SAVED_ITEMS = (
    """
query GetSavedItems(
  $filter: SavedItemsFilter
  $sort: SavedItemsSort
  $pagination: PaginationInput
) {
  user {
    savedItems(filter: $filter, sort: $sort, pagination: $pagination) {
      edges {
        cursor
        node {
          url
          _createdAt
          _updatedAt
          id
          status
          isFavorite
          favoritedAt
          isArchived
          archivedAt
          tags {
            id
            name
          }
          item {
            ...ItemDetails
            ... on Item {
              article
            }
          }
        }
      }
      pageInfo {
        hasNextPage
        endCursor
      }
      totalCount
    }
  }
}
"""
    + ITEM_DETAILS_FRAGMENT
)

GET_SAVED_ITEM_BY_ID = (
    """
query GetSavedItemById($itemId: ID!) {
  user {
    savedItemById(id: $itemId) {
      url
      _createdAt
      id
      isFavorite
      isArchived
      archivedAt
      tags {
        id
        name
      }
      item {
        ...ItemDetails
        ... on Item {
          article
        }
      }
    }
  }
}
"""
    + ITEM_DETAILS_FRAGMENT
)

SAVE_PAGE = """
mutation savePage($input: SavePageInput!) {
  savePage(input: $input) {
    ... on SaveSuccess {
      url
      clientRequestId
    }
    ... on SaveError {
      errorCodes
      message
    }
  }
}
"""
